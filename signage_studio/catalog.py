"""
@catalog_services
Locations, products and display templates
"""

import re
import math
import logging
from typing import Dict, List, Optional

from .config import now_ms
from .database import DatabaseManager, encode_json, row_to_dict
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STATUSES = ('active', 'inactive')
LAYOUT_TYPES = ('grid', 'list', 'featured')

DEFAULT_BRANDING = {
    'primary_color': '#FFDD00',
    'secondary_color': '#0066CC',
    'font': 'Inter',
}

DEFAULT_TEMPLATES = [
    {'name': 'Grid 2 Columns', 'slug': 'grid-2-columns', 'layout_type': 'grid', 'columns': 2, 'is_default': True},
    {'name': 'Grid 3 Columns', 'slug': 'grid-3-columns', 'layout_type': 'grid', 'columns': 3},
    {'name': 'Grid 4 Columns', 'slug': 'grid-4-columns', 'layout_type': 'grid', 'columns': 4},
    {'name': 'List Layout', 'slug': 'list-layout', 'layout_type': 'list'},
    {'name': 'Featured Layout', 'slug': 'featured-layout', 'layout_type': 'featured'},
]


def slugify(value: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')


def require_text(data: Dict, key: str, label: Optional[str] = None) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label or key} is required")
    return value.strip()


def check_choice(value, choices, label: str):
    if value not in choices:
        raise ValidationError(f"{label} must be one of: {', '.join(choices)}")
    return value


# =============================================================================
# @location_service - Location Management
# =============================================================================
class LocationService:
    """Venues with their own branding, referenced by screens"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, json_fields=('branding',))

    def list_locations(self, status: Optional[str] = None) -> List[Dict]:
        if status:
            rows = self.db.fetch_all(
                'SELECT * FROM locations WHERE status = ? ORDER BY created_at DESC, id DESC', (status,))
        else:
            rows = self.db.fetch_all('SELECT * FROM locations ORDER BY created_at DESC, id DESC')
        return [self._to_dict(row) for row in rows]

    def get_location(self, location_id: int) -> Dict:
        location = self._to_dict(self.db.fetch_one('SELECT * FROM locations WHERE id = ?', (location_id,)))
        if not location:
            raise NotFoundError('Location', location_id)
        return location

    def get_location_by_slug(self, slug: str) -> Optional[Dict]:
        return self._to_dict(self.db.fetch_one(
            'SELECT * FROM locations WHERE slug = ? ORDER BY id LIMIT 1', (slug,)))

    def _branding(self, data: Dict, current: Optional[Dict] = None) -> Dict:
        branding = dict(current or DEFAULT_BRANDING)
        branding.update({k: v for k, v in (data.get('branding') or {}).items() if v is not None})
        return branding

    def create_location(self, data: Dict) -> Dict:
        """@location_creation - Create a location, deriving the slug from the name if absent"""
        name = require_text(data, 'name')
        slug = slugify(data.get('slug') or name)
        if not slug:
            raise ValidationError("slug is required")
        status = check_choice(data.get('status', 'active'), STATUSES, 'status')
        now = now_ms()

        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO locations (name, slug, branding, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (name, slug, encode_json(self._branding(data)), status, now, now))
            location_id = cursor.lastrowid

        logger.info(f"Location {location_id} ({slug}) created")
        return self.get_location(location_id)

    def update_location(self, location_id: int, data: Dict) -> Dict:
        current = self.get_location(location_id)
        name = require_text(data, 'name') if 'name' in data else current['name']
        slug = slugify(data['slug']) if data.get('slug') else current['slug']
        status = check_choice(data.get('status', current['status']), STATUSES, 'status')
        branding = self._branding(data, current['branding'])

        with self.db.transaction() as conn:
            conn.execute('''
                UPDATE locations
                SET name = ?, slug = ?, branding = ?, status = ?, updated_at = ?
                WHERE id = ?
            ''', (name, slug, encode_json(branding), status, now_ms(), location_id))

        logger.info(f"Location {location_id} updated")
        return self.get_location(location_id)

    def delete_location(self, location_id: int) -> None:
        self.get_location(location_id)
        with self.db.transaction() as conn:
            in_use = conn.execute(
                'SELECT COUNT(*) FROM screens WHERE location_id = ?', (location_id,)).fetchone()[0]
            if in_use:
                raise ValidationError(f"Location is used by {in_use} screen(s)")
            conn.execute('DELETE FROM locations WHERE id = ?', (location_id,))
        logger.info(f"Location {location_id} deleted")


# =============================================================================
# @product_service - Product Catalog
# =============================================================================
class ProductService:
    """Products shown on dynamic screens and used in menu generation"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        product = row_to_dict(row)
        if product is not None:
            product['order'] = product.pop('sort_order')
        return product

    @staticmethod
    def _price(value) -> float:
        try:
            price = float(value)
        except (TypeError, ValueError):
            raise ValidationError("price must be a number")
        if not math.isfinite(price):
            raise ValidationError("price must be a finite number")
        if price < 0:
            raise ValidationError("price must not be negative")
        return price

    def list_products(self) -> List[Dict]:
        rows = self.db.fetch_all('SELECT * FROM products ORDER BY sort_order, id')
        return [self._to_dict(row) for row in rows]

    def list_active_products(self, category: Optional[str] = None) -> List[Dict]:
        if category:
            rows = self.db.fetch_all(
                "SELECT * FROM products WHERE status = 'active' AND category = ? ORDER BY sort_order, id",
                (category,))
        else:
            rows = self.db.fetch_all("SELECT * FROM products WHERE status = 'active' ORDER BY sort_order, id")
        return [self._to_dict(row) for row in rows]

    def list_by_category(self, category: Optional[str] = None) -> List[Dict]:
        if not category:
            return self.list_products()
        rows = self.db.fetch_all(
            'SELECT * FROM products WHERE category = ? ORDER BY sort_order, id', (category,))
        return [self._to_dict(row) for row in rows]

    def get_product(self, product_id: int) -> Dict:
        product = self._to_dict(self.db.fetch_one('SELECT * FROM products WHERE id = ?', (product_id,)))
        if not product:
            raise NotFoundError('Product', product_id)
        return product

    def get_products_by_ids(self, product_ids: List[int]) -> Dict[int, Dict]:
        if not product_ids:
            return {}
        placeholders = ','.join('?' * len(product_ids))
        rows = self.db.fetch_all(f'SELECT * FROM products WHERE id IN ({placeholders})', product_ids)
        return {row['id']: self._to_dict(row) for row in rows}

    def create_product(self, data: Dict) -> Dict:
        """@product_creation - Append a product to the end of the catalog unless an order is given"""
        name = require_text(data, 'name')
        price = self._price(data.get('price'))
        status = check_choice(data.get('status', 'active'), STATUSES, 'status')
        now = now_ms()

        with self.db.transaction() as conn:
            order = data.get('order')
            if order is None:
                order = conn.execute('SELECT COALESCE(MAX(sort_order), 0) + 1 FROM products').fetchone()[0]
            cursor = conn.execute('''
                INSERT INTO products (name, price, currency, category, description, image,
                                      status, sort_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                name, price, data.get('currency') or 'CZK',
                data.get('category') or None, data.get('description') or None, data.get('image') or None,
                status, int(order), now, now
            ))
            product_id = cursor.lastrowid

        logger.info(f"Product {product_id} ({name}) created with order {order}")
        return self.get_product(product_id)

    def update_product(self, product_id: int, data: Dict) -> Dict:
        current = self.get_product(product_id)
        fields = {
            'name': require_text(data, 'name') if 'name' in data else current['name'],
            'price': self._price(data['price']) if 'price' in data else current['price'],
            'currency': data.get('currency') or current['currency'],
            'category': data['category'] or None if 'category' in data else current['category'],
            'description': data['description'] or None if 'description' in data else current['description'],
            'image': data['image'] or None if 'image' in data else current['image'],
            'status': check_choice(data.get('status', current['status']), STATUSES, 'status'),
            'sort_order': int(data['order']) if data.get('order') is not None else current['order'],
        }

        with self.db.transaction() as conn:
            conn.execute('''
                UPDATE products
                SET name = ?, price = ?, currency = ?, category = ?, description = ?, image = ?,
                    status = ?, sort_order = ?, updated_at = ?
                WHERE id = ?
            ''', (*fields.values(), now_ms(), product_id))

        logger.info(f"Product {product_id} updated")
        return self.get_product(product_id)

    def delete_product(self, product_id: int) -> None:
        """Products are never removed, only deactivated"""
        self.get_product(product_id)
        self.bulk_update_status([product_id], 'inactive')

    def bulk_update_status(self, product_ids: List[int], status: str) -> Dict:
        check_choice(status, STATUSES, 'status')
        now = now_ms()
        with self.db.transaction() as conn:
            for product_id in product_ids:
                conn.execute('UPDATE products SET status = ?, updated_at = ? WHERE id = ?',
                             (status, now, product_id))
        logger.info(f"{len(product_ids)} products set to {status}")
        return {'updated': len(product_ids)}

    def bulk_delete(self, product_ids: List[int]) -> Dict:
        self.bulk_update_status(product_ids, 'inactive')
        return {'deleted': len(product_ids)}

    def reorder(self, orders: List[Dict]) -> Dict:
        """@product_reorder - Apply a list of {id, order} pairs"""
        now = now_ms()
        with self.db.transaction() as conn:
            for item in orders:
                if 'id' not in item or 'order' not in item:
                    raise ValidationError("each entry needs id and order")
                conn.execute('UPDATE products SET sort_order = ?, updated_at = ? WHERE id = ?',
                             (int(item['order']), now, item['id']))
        logger.info(f"{len(orders)} products reordered")
        return {'reordered': len(orders)}


# =============================================================================
# @template_service - Display Templates
# =============================================================================
class TemplateService:
    """Layouts for dynamic screens; at most one is the default"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, json_fields=('config',),
                           bool_fields=('show_prices', 'show_images', 'is_default'))

    def list_templates(self) -> List[Dict]:
        rows = self.db.fetch_all('SELECT * FROM templates ORDER BY created_at, id')
        return [self._to_dict(row) for row in rows]

    def get_template(self, template_id: int) -> Dict:
        template = self._to_dict(self.db.fetch_one('SELECT * FROM templates WHERE id = ?', (template_id,)))
        if not template:
            raise NotFoundError('Template', template_id)
        return template

    def get_default_template(self) -> Optional[Dict]:
        return self._to_dict(self.db.fetch_one('SELECT * FROM templates WHERE is_default = 1 LIMIT 1'))

    @staticmethod
    def _columns(layout_type: str, value) -> Optional[int]:
        # Only grids have a column count
        if layout_type != 'grid':
            return None
        columns = int(value) if value is not None else 3
        if columns < 1:
            raise ValidationError("columns must be at least 1")
        return columns

    def create_template(self, data: Dict) -> Dict:
        name = require_text(data, 'name')
        slug = slugify(data.get('slug') or name)
        layout_type = check_choice(data.get('layout_type', 'grid'), LAYOUT_TYPES, 'layout_type')
        is_default = bool(data.get('is_default', False))
        now = now_ms()

        with self.db.transaction() as conn:
            if is_default:
                conn.execute('UPDATE templates SET is_default = 0, updated_at = ? WHERE is_default = 1', (now,))
            cursor = conn.execute('''
                INSERT INTO templates (name, slug, layout_type, columns, show_prices, show_images,
                                       config, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                name, slug, layout_type, self._columns(layout_type, data.get('columns')),
                bool(data.get('show_prices', True)), bool(data.get('show_images', True)),
                encode_json(data.get('config')), is_default, now, now
            ))
            template_id = cursor.lastrowid

        logger.info(f"Template {template_id} ({slug}) created")
        return self.get_template(template_id)

    def update_template(self, template_id: int, data: Dict) -> Dict:
        current = self.get_template(template_id)
        layout_type = check_choice(data.get('layout_type', current['layout_type']), LAYOUT_TYPES, 'layout_type')
        is_default = bool(data.get('is_default', current['is_default']))
        now = now_ms()

        with self.db.transaction() as conn:
            if is_default:
                conn.execute('UPDATE templates SET is_default = 0, updated_at = ? WHERE is_default = 1 AND id != ?',
                             (now, template_id))
            conn.execute('''
                UPDATE templates
                SET name = ?, slug = ?, layout_type = ?, columns = ?, show_prices = ?, show_images = ?,
                    config = ?, is_default = ?, updated_at = ?
                WHERE id = ?
            ''', (
                require_text(data, 'name') if 'name' in data else current['name'],
                slugify(data['slug']) if data.get('slug') else current['slug'],
                layout_type,
                self._columns(layout_type, data.get('columns', current['columns'])),
                bool(data.get('show_prices', current['show_prices'])),
                bool(data.get('show_images', current['show_images'])),
                encode_json(data.get('config', current['config'])),
                is_default, now, template_id
            ))

        logger.info(f"Template {template_id} updated")
        return self.get_template(template_id)

    def delete_template(self, template_id: int) -> None:
        self.get_template(template_id)
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM templates WHERE id = ?', (template_id,))
        logger.info(f"Template {template_id} deleted")

    def set_default(self, template_id: int) -> Dict:
        """@template_default - Make one template the only default"""
        self.get_template(template_id)
        now = now_ms()
        with self.db.transaction() as conn:
            conn.execute('UPDATE templates SET is_default = 0, updated_at = ? WHERE is_default = 1', (now,))
            conn.execute('UPDATE templates SET is_default = 1, updated_at = ? WHERE id = ?', (now, template_id))
        logger.info(f"Template {template_id} is now the default")
        return self.get_template(template_id)

    def seed_default_templates(self) -> Dict:
        """@template_seed - Insert the stock layouts into an empty table"""
        existing = self.db.fetch_one('SELECT COUNT(*) FROM templates')[0]
        if existing > 0:
            return {'message': 'Templates already exist'}

        for template in DEFAULT_TEMPLATES:
            self.create_template(dict(template, show_prices=True, show_images=True))

        logger.info(f"Seeded {len(DEFAULT_TEMPLATES)} default templates")
        return {'message': 'Default templates seeded successfully'}
