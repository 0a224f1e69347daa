"""
@flask_app
Application factory and JSON routes for the signage admin
"""

import os
import logging
from typing import Dict, Optional

from flask import Flask, jsonify, request, send_from_directory

from .assets import StaticAssetService
from .catalog import LocationService, ProductService, TemplateService
from .config import AppConfig, configure_logging
from .database import DatabaseManager
from .errors import FalAPIError, NotFoundError
from .fal_client import FalClient
from .gallery import GalleryService
from .generations import GenerationService
from .orchestrator import GenerationOrchestrator
from .screens import ScreenService
from .storage import FileManager


def _known_error(error: Exception):
    """Map service exceptions to status codes"""
    if isinstance(error, NotFoundError):
        return jsonify({'error': str(error)}), 404
    if isinstance(error, FalAPIError):
        return jsonify({'error': str(error)}), 502
    if isinstance(error, ValueError):
        return jsonify({'error': str(error)}), 400
    return jsonify({'error': str(error)}), 500


def _json_body() -> Dict:
    return request.get_json(silent=True) or {}


def create_app(config_overrides: Optional[Dict] = None, fal_client: Optional[FalClient] = None) -> Flask:
    """@app_factory - Create and configure Flask application"""
    app = Flask(__name__)
    app.config.update(AppConfig.as_dict(config_overrides))

    configure_logging(app.config['LOG_FOLDER'], app.config['LOG_FORMAT'])

    # Initialize services
    db = DatabaseManager(app.config['DB_PATH'])
    db.init_database()
    file_manager = FileManager(app.config['UPLOAD_FOLDER'], app.config['ALLOWED_EXTENSIONS'],
                               app.config['PUBLIC_BASE_URL'])
    location_service = LocationService(db)
    product_service = ProductService(db)
    template_service = TemplateService(db)
    screen_service = ScreenService(db, location_service, product_service, template_service)
    asset_service = StaticAssetService(db, file_manager)
    generation_service = GenerationService(db, file_manager)
    gallery_service = GalleryService(db, generation_service)
    if fal_client is None:
        fal_client = FalClient(app.config['FAL_API_KEY'], app.config['FAL_API_BASE_URL'],
                               app.config['FAL_REQUEST_TIMEOUT'])
    orchestrator = GenerationOrchestrator(
        fal_client, generation_service, file_manager,
        products=product_service,
        user_id=app.config['TEMP_USER_ID'],
        poll_interval=app.config['GENERATION_POLL_INTERVAL'],
        poll_timeout=app.config['GENERATION_POLL_TIMEOUT'],
        default_logo_url=app.config['MENU_DEFAULT_LOGO_URL'],
    )
    user_id = app.config['TEMP_USER_ID']

    app.extensions['signage_studio'] = {
        'db': db,
        'files': file_manager,
        'locations': location_service,
        'products': product_service,
        'templates': template_service,
        'screens': screen_service,
        'assets': asset_service,
        'generations': generation_service,
        'gallery': gallery_service,
        'orchestrator': orchestrator,
    }

    # =========================================================================
    # @routes_files - File Upload and Serving
    # =========================================================================
    @app.route('/api/files', methods=['POST'])
    def upload_file():
        """@uploads - Store a file and answer with its storage id and URL"""
        try:
            if 'file' not in request.files:
                return jsonify({'error': 'No file selected'}), 400
            return jsonify(file_manager.save_upload(request.files['file'])), 201
        except (ValueError, RuntimeError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Upload error: {e}")
            return jsonify({'error': f'Upload failed: {str(e)}'}), 500

    @app.route('/api/files/<storage_id>')
    def get_file_url(storage_id):
        url = file_manager.get_url(storage_id)
        if not url:
            return jsonify({'error': 'File not found'}), 404
        return jsonify({'storage_id': storage_id, 'url': url})

    @app.route('/uploads/<storage_id>')
    def uploaded_file(storage_id):
        """@file_serve - Serve stored files"""
        if not os.path.isfile(file_manager.path_for(storage_id)):
            return "File not found", 404
        return send_from_directory(os.path.abspath(file_manager.upload_folder), storage_id)

    @app.route('/api/system/status')
    def system_status():
        try:
            counts = {}
            for table in ('locations', 'screens', 'products', 'static_assets', 'generated_files'):
                counts[table] = db.fetch_one(f'SELECT COUNT(*) FROM {table}')[0]
            active_screens = db.fetch_one("SELECT COUNT(*) FROM screens WHERE status = 'active'")[0]
            return jsonify({
                'status': 'running',
                'public_base_url': app.config['PUBLIC_BASE_URL'],
                'counts': counts,
                'active_screens': active_screens,
                'active_polls': orchestrator.poller.active_ids(),
                'storage_used_mb': round(file_manager.total_size() / 1024 / 1024, 2),
            })
        except Exception as e:
            logging.error(f"System status error: {e}")
            return jsonify({'error': 'Failed to get status'}), 500

    # =========================================================================
    # @routes_locations
    # =========================================================================
    @app.route('/api/locations')
    def list_locations():
        try:
            return jsonify(location_service.list_locations(request.args.get('status')))
        except Exception as e:
            logging.error(f"Error getting locations: {e}")
            return jsonify({'error': 'Failed to get locations'}), 500

    @app.route('/api/locations', methods=['POST'])
    def create_location():
        try:
            return jsonify(location_service.create_location(_json_body())), 201
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating location: {e}")
            return jsonify({'error': 'Failed to create location'}), 500

    @app.route('/api/locations/slug/<slug>')
    def get_location_by_slug(slug):
        location = location_service.get_location_by_slug(slug)
        if not location:
            return jsonify({'error': 'Location not found'}), 404
        return jsonify(location)

    @app.route('/api/locations/<int:location_id>')
    def get_location(location_id):
        try:
            return jsonify(location_service.get_location(location_id))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/locations/<int:location_id>', methods=['PUT'])
    def update_location(location_id):
        try:
            return jsonify(location_service.update_location(location_id, _json_body()))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating location {location_id}: {e}")
            return jsonify({'error': 'Failed to update location'}), 500

    @app.route('/api/locations/<int:location_id>', methods=['DELETE'])
    def delete_location(location_id):
        try:
            location_service.delete_location(location_id)
            return jsonify({'success': 'Location deleted successfully'})
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting location {location_id}: {e}")
            return jsonify({'error': 'Failed to delete location'}), 500

    # =========================================================================
    # @routes_products
    # =========================================================================
    @app.route('/api/products')
    def list_products():
        """@product_list - ?status=active for the active catalog, ?category= to filter; both combine"""
        try:
            if request.args.get('status') == 'active':
                return jsonify(product_service.list_active_products(request.args.get('category')))
            return jsonify(product_service.list_by_category(request.args.get('category')))
        except Exception as e:
            logging.error(f"Error getting products: {e}")
            return jsonify({'error': 'Failed to get products'}), 500

    @app.route('/api/products', methods=['POST'])
    def create_product():
        try:
            return jsonify(product_service.create_product(_json_body())), 201
        except ValueError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating product: {e}")
            return jsonify({'error': 'Failed to create product'}), 500

    @app.route('/api/products/<int:product_id>')
    def get_product(product_id):
        try:
            return jsonify(product_service.get_product(product_id))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/products/<int:product_id>', methods=['PUT'])
    def update_product(product_id):
        try:
            return jsonify(product_service.update_product(product_id, _json_body()))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating product {product_id}: {e}")
            return jsonify({'error': 'Failed to update product'}), 500

    @app.route('/api/products/<int:product_id>', methods=['DELETE'])
    def delete_product(product_id):
        try:
            product_service.delete_product(product_id)
            return jsonify({'success': 'Product deactivated'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting product {product_id}: {e}")
            return jsonify({'error': 'Failed to delete product'}), 500

    @app.route('/api/products/bulk-status', methods=['POST'])
    def bulk_update_products():
        try:
            data = _json_body()
            return jsonify(product_service.bulk_update_status(data.get('ids') or [], data.get('status')))
        except ValueError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating product status: {e}")
            return jsonify({'error': 'Failed to update products'}), 500

    @app.route('/api/products/bulk-delete', methods=['POST'])
    def bulk_delete_products():
        try:
            return jsonify(product_service.bulk_delete(_json_body().get('ids') or []))
        except Exception as e:
            logging.error(f"Error deleting products: {e}")
            return jsonify({'error': 'Failed to delete products'}), 500

    @app.route('/api/products/reorder', methods=['PUT'])
    def reorder_products():
        try:
            return jsonify(product_service.reorder(_json_body().get('orders') or []))
        except ValueError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error reordering products: {e}")
            return jsonify({'error': 'Failed to reorder products'}), 500

    # =========================================================================
    # @routes_templates
    # =========================================================================
    @app.route('/api/templates')
    def list_templates():
        try:
            return jsonify(template_service.list_templates())
        except Exception as e:
            logging.error(f"Error getting templates: {e}")
            return jsonify({'error': 'Failed to get templates'}), 500

    @app.route('/api/templates', methods=['POST'])
    def create_template():
        try:
            return jsonify(template_service.create_template(_json_body())), 201
        except ValueError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating template: {e}")
            return jsonify({'error': 'Failed to create template'}), 500

    @app.route('/api/templates/seed', methods=['POST'])
    def seed_templates():
        try:
            return jsonify(template_service.seed_default_templates())
        except Exception as e:
            logging.error(f"Error seeding templates: {e}")
            return jsonify({'error': 'Failed to seed templates'}), 500

    @app.route('/api/templates/<int:template_id>')
    def get_template(template_id):
        try:
            return jsonify(template_service.get_template(template_id))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/templates/<int:template_id>', methods=['PUT'])
    def update_template(template_id):
        try:
            return jsonify(template_service.update_template(template_id, _json_body()))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating template {template_id}: {e}")
            return jsonify({'error': 'Failed to update template'}), 500

    @app.route('/api/templates/<int:template_id>/default', methods=['POST'])
    def set_default_template(template_id):
        try:
            return jsonify(template_service.set_default(template_id))
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error setting default template {template_id}: {e}")
            return jsonify({'error': 'Failed to set default template'}), 500

    @app.route('/api/templates/<int:template_id>', methods=['DELETE'])
    def delete_template(template_id):
        try:
            template_service.delete_template(template_id)
            return jsonify({'success': 'Template deleted successfully'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting template {template_id}: {e}")
            return jsonify({'error': 'Failed to delete template'}), 500

    # =========================================================================
    # @routes_screens - Screens and the display feed
    # =========================================================================
    @app.route('/api/screens')
    def list_screens():
        try:
            return jsonify(screen_service.list_screens(request.args.get('location_id', type=int)))
        except Exception as e:
            logging.error(f"Error getting screens: {e}")
            return jsonify({'error': 'Failed to get screens'}), 500

    @app.route('/api/screens', methods=['POST'])
    def create_screen():
        try:
            return jsonify(screen_service.create_screen(_json_body())), 201
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating screen: {e}")
            return jsonify({'error': 'Failed to create screen'}), 500

    @app.route('/api/screens/<int:screen_pk>')
    def get_screen(screen_pk):
        try:
            return jsonify(screen_service.get_screen(screen_pk))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/screens/<int:screen_pk>', methods=['PUT'])
    def update_screen(screen_pk):
        try:
            return jsonify(screen_service.update_screen(screen_pk, _json_body()))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating screen {screen_pk}: {e}")
            return jsonify({'error': 'Failed to update screen'}), 500

    @app.route('/api/screens/<int:screen_pk>', methods=['DELETE'])
    def delete_screen(screen_pk):
        try:
            screen_service.delete_screen(screen_pk)
            return jsonify({'success': 'Screen deleted successfully'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting screen {screen_pk}: {e}")
            return jsonify({'error': 'Failed to delete screen'}), 500

    @app.route('/api/screens/<int:screen_pk>/publish', methods=['POST'])
    def publish_to_screen(screen_pk):
        """@screen_publish - Put a generated file or image URL on a screen"""
        try:
            data = _json_body()
            image_url = data.get('image_url')
            if data.get('file_id') is not None:
                image_url = generation_service.get_generated_file(int(data['file_id']))['file_url']
            return jsonify(screen_service.publish_image(screen_pk, image_url))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error publishing to screen {screen_pk}: {e}")
            return jsonify({'error': 'Failed to publish image'}), 500

    @app.route('/api/display/<screen_id>')
    def display_feed(screen_id):
        """@display_feed - Polled by the display client"""
        try:
            feed = screen_service.get_screen_for_display(screen_id)
            if feed is None:
                return jsonify({'error': 'Screen not found or inactive'}), 404
            return jsonify(feed)
        except Exception as e:
            logging.error(f"Error serving display feed for {screen_id}: {e}")
            return jsonify({'error': 'Failed to get display feed'}), 500

    # =========================================================================
    # @routes_assets - Static assets
    # =========================================================================
    @app.route('/api/assets')
    def list_assets():
        try:
            return jsonify(asset_service.list_assets())
        except Exception as e:
            logging.error(f"Error getting assets: {e}")
            return jsonify({'error': 'Failed to get assets'}), 500

    @app.route('/api/assets', methods=['POST'])
    def create_asset():
        """Multipart upload, or JSON describing an already stored file"""
        try:
            if 'file' in request.files:
                asset = asset_service.upload_asset(request.files['file'], request.form.get('name'))
            else:
                data = _json_body()
                if data.get('storage_id') and not data.get('file_url'):
                    data['file_url'] = file_manager.get_url(data['storage_id'])
                asset = asset_service.create_asset(data)
            return jsonify(asset), 201
        except (ValueError, RuntimeError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating asset: {e}")
            return jsonify({'error': 'Failed to create asset'}), 500

    @app.route('/api/assets/<int:asset_id>')
    def get_asset(asset_id):
        try:
            return jsonify(asset_service.get_asset(asset_id))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/assets/<int:asset_id>', methods=['DELETE'])
    def delete_asset(asset_id):
        try:
            asset_service.delete_asset(asset_id)
            return jsonify({'success': 'Asset deleted successfully'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting asset {asset_id}: {e}")
            return jsonify({'error': 'Failed to delete asset'}), 500

    # =========================================================================
    # @routes_generations - fal.ai generation
    # =========================================================================
    def _start_generation(start, action: str):
        try:
            return jsonify(start(_json_body())), 202
        except (ValueError, LookupError, RuntimeError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error starting {action}: {e}")
            return jsonify({'error': f'Failed to start {action}'}), 500

    @app.route('/api/generations/image', methods=['POST'])
    def generate_image():
        return _start_generation(orchestrator.generate_image, 'image generation')

    @app.route('/api/generations/edit', methods=['POST'])
    def edit_image():
        return _start_generation(orchestrator.edit_image, 'image edit')

    @app.route('/api/generations/menu', methods=['POST'])
    def generate_menu():
        return _start_generation(orchestrator.generate_menu, 'menu generation')

    @app.route('/api/generations/video', methods=['POST'])
    def generate_video():
        return _start_generation(orchestrator.generate_video, 'video generation')

    @app.route('/api/generations')
    def list_generations():
        try:
            return jsonify(generation_service.list_generations(
                user_id,
                generation_type=request.args.get('generation_type'),
                type=request.args.get('type'),
                status=request.args.get('status'),
            ))
        except Exception as e:
            logging.error(f"Error getting generations: {e}")
            return jsonify({'error': 'Failed to get generations'}), 500

    @app.route('/api/generations/<int:generation_id>')
    def get_generation(generation_id):
        try:
            generation = generation_service.get_generation(generation_id)
            generation['files'] = generation_service.list_files_for_generation(generation_id)
            return jsonify(generation)
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/generations/<int:generation_id>/poll', methods=['POST'])
    def poll_generation(generation_id):
        """@manual_poll - Run one status check now"""
        try:
            generation_service.get_generation(generation_id)
            orchestrator.check_generation(generation_id)
            return jsonify(generation_service.get_generation(generation_id))
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error polling generation {generation_id}: {e}")
            return jsonify({'error': 'Failed to poll generation'}), 500

    # =========================================================================
    # @routes_gallery - Generated files and collections
    # =========================================================================
    @app.route('/api/generated-files')
    def list_generated_files():
        try:
            return jsonify(gallery_service.files_with_details(
                user_id,
                file_type=request.args.get('file_type'),
                generation_type=request.args.get('generation_type'),
                image_generation_type=request.args.get('image_generation_type'),
                model=request.args.get('model'),
                search=request.args.get('search'),
                sort_by=request.args.get('sort_by', 'newest'),
            ))
        except ValueError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error getting generated files: {e}")
            return jsonify({'error': 'Failed to get generated files'}), 500

    @app.route('/api/generated-files/models')
    def available_models():
        try:
            return jsonify(gallery_service.available_models(user_id))
        except Exception as e:
            logging.error(f"Error getting models: {e}")
            return jsonify({'error': 'Failed to get models'}), 500

    @app.route('/api/generated-files/<int:file_id>')
    def get_generated_file(file_id):
        try:
            return jsonify(gallery_service.file_with_full_details(file_id))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/generated-files/<int:file_id>', methods=['DELETE'])
    def delete_generated_file(file_id):
        try:
            generation_service.delete_generated_file(file_id)
            return jsonify({'success': 'File deleted successfully'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting generated file {file_id}: {e}")
            return jsonify({'error': 'Failed to delete file'}), 500

    @app.route('/api/collections')
    def list_collections():
        try:
            return jsonify(gallery_service.list_collections(user_id))
        except Exception as e:
            logging.error(f"Error getting collections: {e}")
            return jsonify({'error': 'Failed to get collections'}), 500

    @app.route('/api/collections', methods=['POST'])
    def create_collection():
        try:
            return jsonify(gallery_service.create_collection(user_id, _json_body())), 201
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error creating collection: {e}")
            return jsonify({'error': 'Failed to create collection'}), 500

    @app.route('/api/collections/<int:collection_id>')
    def get_collection(collection_id):
        try:
            return jsonify(gallery_service.get_collection(collection_id, with_files=True))
        except LookupError as e:
            return _known_error(e)

    @app.route('/api/collections/<int:collection_id>', methods=['PUT'])
    def update_collection(collection_id):
        try:
            return jsonify(gallery_service.update_collection(collection_id, _json_body()))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error updating collection {collection_id}: {e}")
            return jsonify({'error': 'Failed to update collection'}), 500

    @app.route('/api/collections/<int:collection_id>', methods=['DELETE'])
    def delete_collection(collection_id):
        try:
            gallery_service.delete_collection(collection_id)
            return jsonify({'success': 'Collection deleted successfully'})
        except LookupError as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error deleting collection {collection_id}: {e}")
            return jsonify({'error': 'Failed to delete collection'}), 500

    @app.route('/api/collections/<int:collection_id>/files', methods=['POST'])
    def add_collection_file(collection_id):
        try:
            file_id = _json_body().get('file_id')
            if file_id is None:
                return jsonify({'error': 'file_id is required'}), 400
            return jsonify(gallery_service.add_file(collection_id, int(file_id)))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error adding file to collection {collection_id}: {e}")
            return jsonify({'error': 'Failed to add file to collection'}), 500

    @app.route('/api/collections/<int:collection_id>/files/<int:file_id>', methods=['DELETE'])
    def remove_collection_file(collection_id, file_id):
        try:
            return jsonify(gallery_service.remove_file(collection_id, file_id))
        except (ValueError, LookupError) as e:
            return _known_error(e)
        except Exception as e:
            logging.error(f"Error removing file from collection {collection_id}: {e}")
            return jsonify({'error': 'Failed to remove file from collection'}), 500

    return app
