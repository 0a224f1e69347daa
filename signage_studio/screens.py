"""
@screen_service
Display screens and the feed a screen renders from
"""

import logging
from typing import Dict, List, Optional

from .catalog import LocationService, ProductService, TemplateService, check_choice, require_text
from .config import now_ms
from .database import DatabaseManager, encode_json, row_to_dict
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MODES = ('dynamic', 'static')
SCREEN_STATUSES = ('active', 'inactive', 'maintenance')
ORIENTATIONS = ('landscape', 'portrait')
DEFAULT_REFRESH_INTERVAL = 300


class ScreenService:
    """Handles screen configuration and display feed generation"""

    def __init__(self, db: DatabaseManager, locations: LocationService,
                 products: ProductService, templates: TemplateService):
        self.db = db
        self.locations = locations
        self.products = products
        self.templates = templates

    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, json_fields=('dynamic_config', 'static_config', 'layout_config'))

    def list_screens(self, location_id: Optional[int] = None) -> List[Dict]:
        if location_id is not None:
            rows = self.db.fetch_all(
                'SELECT * FROM screens WHERE location_id = ? ORDER BY created_at DESC, id DESC', (location_id,))
        else:
            rows = self.db.fetch_all('SELECT * FROM screens ORDER BY created_at DESC, id DESC')
        return [self._to_dict(row) for row in rows]

    def get_screen(self, screen_pk: int) -> Dict:
        screen = self._to_dict(self.db.fetch_one('SELECT * FROM screens WHERE id = ?', (screen_pk,)))
        if not screen:
            raise NotFoundError('Screen', screen_pk)
        return screen

    def get_screen_by_screen_id(self, screen_id: str) -> Optional[Dict]:
        return self._to_dict(self.db.fetch_one('SELECT * FROM screens WHERE screen_id = ?', (screen_id,)))

    def _layout_config(self, value: Optional[Dict], current: Optional[Dict] = None) -> Dict:
        layout = dict(current or {'orientation': 'landscape', 'refresh_interval': DEFAULT_REFRESH_INTERVAL})
        layout.update({k: v for k, v in (value or {}).items() if v is not None})
        check_choice(layout['orientation'], ORIENTATIONS, 'orientation')
        try:
            layout['refresh_interval'] = int(layout['refresh_interval'])
        except (TypeError, ValueError):
            raise ValidationError("refresh_interval must be a whole number of seconds")
        if layout['refresh_interval'] < 1:
            raise ValidationError("refresh_interval must be positive")
        return layout

    def _mode_configs(self, mode: str, dynamic_config: Optional[Dict], static_config: Optional[Dict]):
        """@mode_validation - Keep only the config block that matches the mode"""
        if mode == 'dynamic':
            if not dynamic_config or not dynamic_config.get('template_id'):
                raise ValidationError("Dynamic screens need a template")
            self.templates.get_template(dynamic_config['template_id'])
            product_ids = [int(pid) for pid in dynamic_config.get('product_ids') or []]
            return {
                'product_ids': product_ids,
                'template_id': int(dynamic_config['template_id']),
                'background_image': dynamic_config.get('background_image') or None,
            }, None

        if not static_config or not static_config.get('image_url'):
            raise ValidationError("Static screens need an image")
        return None, {'image_url': static_config['image_url']}

    def _check_unique(self, screen_id: str, exclude_pk: Optional[int] = None) -> None:
        existing = self.get_screen_by_screen_id(screen_id)
        if existing and existing['id'] != exclude_pk:
            raise ValidationError(f"Screen id '{screen_id}' is already in use")

    def create_screen(self, data: Dict) -> Dict:
        screen_id = require_text(data, 'screen_id')
        name = require_text(data, 'name')
        if not data.get('location_id'):
            raise ValidationError("location_id is required")
        location_id = int(data['location_id'])
        self.locations.get_location(location_id)
        mode = check_choice(data.get('mode', 'dynamic'), MODES, 'mode')
        status = check_choice(data.get('status', 'active'), SCREEN_STATUSES, 'status')
        dynamic_config, static_config = self._mode_configs(
            mode, data.get('dynamic_config'), data.get('static_config'))
        self._check_unique(screen_id)
        now = now_ms()

        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO screens (screen_id, name, location_id, mode, dynamic_config, static_config,
                                     layout_config, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                screen_id, name, location_id, mode, encode_json(dynamic_config), encode_json(static_config),
                encode_json(self._layout_config(data.get('layout_config'))), status, now, now
            ))
            screen_pk = cursor.lastrowid

        logger.info(f"Screen {screen_id} created in {mode} mode")
        return self.get_screen(screen_pk)

    def update_screen(self, screen_pk: int, data: Dict) -> Dict:
        """@screen_update - Partial update; switching mode requires the new mode's config"""
        current = self.get_screen(screen_pk)
        screen_id = require_text(data, 'screen_id') if 'screen_id' in data else current['screen_id']
        self._check_unique(screen_id, exclude_pk=screen_pk)
        location_id = int(data['location_id']) if data.get('location_id') else current['location_id']
        self.locations.get_location(location_id)
        mode = check_choice(data.get('mode', current['mode']), MODES, 'mode')
        if mode == current['mode'] and 'dynamic_config' not in data and 'static_config' not in data:
            # Keep the stored config as is; its template may have been deleted
            dynamic_config, static_config = current['dynamic_config'], current['static_config']
        else:
            dynamic_config, static_config = self._mode_configs(
                mode,
                data.get('dynamic_config', current['dynamic_config']),
                data.get('static_config', current['static_config']),
            )

        with self.db.transaction() as conn:
            conn.execute('''
                UPDATE screens
                SET screen_id = ?, name = ?, location_id = ?, mode = ?, dynamic_config = ?, static_config = ?,
                    layout_config = ?, status = ?, updated_at = ?
                WHERE id = ?
            ''', (
                screen_id,
                require_text(data, 'name') if 'name' in data else current['name'],
                location_id, mode, encode_json(dynamic_config), encode_json(static_config),
                encode_json(self._layout_config(data.get('layout_config'), current['layout_config'])),
                check_choice(data.get('status', current['status']), SCREEN_STATUSES, 'status'),
                now_ms(), screen_pk
            ))

        logger.info(f"Screen {screen_id} updated")
        return self.get_screen(screen_pk)

    def delete_screen(self, screen_pk: int) -> None:
        screen = self.get_screen(screen_pk)
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM screens WHERE id = ?', (screen_pk,))
        logger.info(f"Screen {screen['screen_id']} deleted")

    def publish_image(self, screen_pk: int, image_url: str) -> Dict:
        """@screen_publish - Show a single (e.g. generated menu) image on a screen"""
        if not image_url:
            raise ValidationError("image_url is required")
        return self.update_screen(screen_pk, {'mode': 'static', 'static_config': {'image_url': image_url}})

    def get_screen_for_display(self, screen_id: str) -> Optional[Dict]:
        """@display_feed - Everything a display needs, or None for unknown/inactive screens"""
        screen = self.get_screen_by_screen_id(screen_id)
        if not screen or screen['status'] != 'active':
            return None

        try:
            location = self.locations.get_location(screen['location_id'])
        except NotFoundError:
            logger.warning(f"Screen {screen_id} points at missing location {screen['location_id']}")
            return None

        template = None
        products = []
        if screen['mode'] == 'dynamic' and screen['dynamic_config']:
            config = screen['dynamic_config']
            try:
                template = self.templates.get_template(config['template_id'])
            except NotFoundError:
                template = self.templates.get_default_template()
            by_id = self.products.get_products_by_ids(config['product_ids'])
            seen = set()
            for product_id in config['product_ids']:
                product = by_id.get(product_id)
                if product and product['status'] == 'active' and product_id not in seen:
                    seen.add(product_id)
                    products.append(product)

        return {
            'screen': screen,
            'location': location,
            'template': template,
            'products': products,
        }
