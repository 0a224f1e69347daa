"""
@static_asset_service
Uploaded images kept for direct reuse on static screens
"""

import logging
from typing import Dict, List

from .config import now_ms
from .database import DatabaseManager, row_to_dict
from .errors import NotFoundError, ValidationError
from .storage import FileManager

logger = logging.getLogger(__name__)


class StaticAssetService:
    """Static assets live outside the generation pipeline"""

    def __init__(self, db: DatabaseManager, file_manager: FileManager):
        self.db = db
        self.file_manager = file_manager

    def list_assets(self) -> List[Dict]:
        rows = self.db.fetch_all('SELECT * FROM static_assets ORDER BY created_at DESC, id DESC')
        return [row_to_dict(row) for row in rows]

    def get_asset(self, asset_id: int) -> Dict:
        asset = row_to_dict(self.db.fetch_one('SELECT * FROM static_assets WHERE id = ?', (asset_id,)))
        if not asset:
            raise NotFoundError('Static asset', asset_id)
        return asset

    def create_asset(self, data: Dict) -> Dict:
        """@asset_creation - Record a file that is already stored"""
        if not data.get('name') or not data.get('file_url'):
            raise ValidationError("name and file_url are required")

        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO static_assets (name, storage_id, file_url, file_size, mime_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (
                data['name'], data.get('storage_id'), data['file_url'],
                int(data.get('file_size') or 0), data.get('mime_type') or 'application/octet-stream',
                now_ms()
            ))
            asset_id = cursor.lastrowid

        logger.info(f"Static asset {asset_id} ({data['name']}) created")
        return self.get_asset(asset_id)

    def upload_asset(self, file, name: str = None) -> Dict:
        """@asset_upload - Store an uploaded image and record it"""
        stored = self.file_manager.save_upload(file)
        if not stored['mime_type'].startswith('image/'):
            self.file_manager.delete(stored['storage_id'])
            raise ValidationError("Static assets must be images")
        return self.create_asset({
            'name': name or stored['original_name'],
            'storage_id': stored['storage_id'],
            'file_url': stored['file_url'],
            'file_size': stored['file_size'],
            'mime_type': stored['mime_type'],
        })

    def delete_asset(self, asset_id: int) -> None:
        asset = self.get_asset(asset_id)
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM static_assets WHERE id = ?', (asset_id,))
        self.file_manager.delete(asset['storage_id'])
        logger.info(f"Static asset {asset_id} ({asset['name']}) deleted")
