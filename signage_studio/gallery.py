"""
@gallery_service
Browsing generated files and grouping them into collections
"""

import logging
from typing import Dict, List, Optional

from .catalog import require_text
from .config import now_ms
from .database import DatabaseManager, encode_json, row_to_dict
from .errors import NotFoundError, ValidationError
from .generations import GenerationService

logger = logging.getLogger(__name__)

SORT_OPTIONS = ('newest', 'oldest', 'file_size')


class GalleryService:
    """Read-side views over generated files plus user collections"""

    def __init__(self, db: DatabaseManager, generations: GenerationService):
        self.db = db
        self.generations = generations

    def files_with_details(self, user_id: str, file_type: Optional[str] = None,
                           generation_type: Optional[str] = None,
                           image_generation_type: Optional[str] = None,
                           model: Optional[str] = None, search: Optional[str] = None,
                           sort_by: str = 'newest') -> List[Dict]:
        """@gallery_listing - Files joined with the generation that produced them"""
        if sort_by not in SORT_OPTIONS:
            raise ValidationError(f"sort_by must be one of: {', '.join(SORT_OPTIONS)}")

        generations = {g['id']: g for g in self.generations.list_generations(user_id)}
        needle = search.lower().strip() if search else None

        results = []
        for record in self.generations.list_files_for_user(user_id, file_type=file_type):
            generation = generations.get(record['generation_id'])
            if generation_type and record['generation_type'] != generation_type:
                continue
            if image_generation_type and (not generation or generation['generation_type'] != 'image'
                                          or generation['type'] != image_generation_type):
                continue
            if model and (not generation or generation['model'] != model):
                continue
            if needle:
                haystack = f"{generation['prompt']} {generation['model']}".lower() if generation else ''
                if needle not in haystack:
                    continue
            results.append(dict(record, generation=generation))

        if sort_by == 'oldest':
            results.sort(key=lambda item: (item['created_at'], item['id']))
        elif sort_by == 'file_size':
            results.sort(key=lambda item: item['file_size'], reverse=True)
        return results

    def available_models(self, user_id: str) -> List[str]:
        rows = self.db.fetch_all('SELECT DISTINCT model FROM generations WHERE user_id = ? ORDER BY model',
                                 (user_id,))
        return [row['model'] for row in rows]

    def file_with_full_details(self, file_id: int) -> Dict:
        record = self.generations.get_generated_file(file_id)
        generation = None
        if record['generation_id'] is not None:
            try:
                generation = self.generations.get_generation(record['generation_id'])
            except NotFoundError:
                generation = None
        collections = [c for c in self.list_collections(record['user_id']) if file_id in c['file_ids']]
        return {'file': record, 'generation': generation, 'collections': collections}

    # =========================================================================
    # @collections
    # =========================================================================
    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, json_fields=('file_ids',), bool_fields=('is_public',))

    def _file_ids(self, value) -> List[int]:
        file_ids = []
        for fid in value or []:
            fid = int(fid)
            self.generations.get_generated_file(fid)
            if fid not in file_ids:
                file_ids.append(fid)
        return file_ids

    def list_collections(self, user_id: str) -> List[Dict]:
        rows = self.db.fetch_all('SELECT * FROM collections WHERE user_id = ? ORDER BY created_at DESC, id DESC',
                                 (user_id,))
        return [self._to_dict(row) for row in rows]

    def get_collection(self, collection_id: int, with_files: bool = False) -> Dict:
        collection = self._to_dict(self.db.fetch_one('SELECT * FROM collections WHERE id = ?', (collection_id,)))
        if not collection:
            raise NotFoundError('Collection', collection_id)
        if with_files:
            files = []
            for fid in collection['file_ids']:
                try:
                    files.append(self.generations.get_generated_file(fid))
                except NotFoundError:
                    continue
            collection['files'] = files
        return collection

    def create_collection(self, user_id: str, data: Dict) -> Dict:
        name = require_text(data, 'name')
        now = now_ms()
        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO collections (user_id, name, description, file_ids, is_public, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', (user_id, name, data.get('description') or None, encode_json(self._file_ids(data.get('file_ids'))),
                  bool(data.get('is_public', False)), now, now))
            collection_id = cursor.lastrowid
        logger.info(f"Collection {collection_id} ({name}) created")
        return self.get_collection(collection_id)

    def update_collection(self, collection_id: int, data: Dict) -> Dict:
        current = self.get_collection(collection_id)
        with self.db.transaction() as conn:
            conn.execute('''
                UPDATE collections
                SET name = ?, description = ?, file_ids = ?, is_public = ?, updated_at = ?
                WHERE id = ?
            ''', (
                require_text(data, 'name') if 'name' in data else current['name'],
                (data['description'] or None) if 'description' in data else current['description'],
                encode_json(self._file_ids(data['file_ids']) if 'file_ids' in data else current['file_ids']),
                bool(data.get('is_public', current['is_public'])),
                now_ms(), collection_id
            ))
        logger.info(f"Collection {collection_id} updated")
        return self.get_collection(collection_id)

    def add_file(self, collection_id: int, file_id: int) -> Dict:
        current = self.get_collection(collection_id)
        if file_id in current['file_ids']:
            return current
        return self.update_collection(collection_id, {'file_ids': current['file_ids'] + [file_id]})

    def remove_file(self, collection_id: int, file_id: int) -> Dict:
        current = self.get_collection(collection_id)
        return self.update_collection(
            collection_id, {'file_ids': [fid for fid in current['file_ids'] if fid != file_id]})

    def delete_collection(self, collection_id: int) -> None:
        """Files in the collection are kept"""
        self.get_collection(collection_id)
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM collections WHERE id = ?', (collection_id,))
        logger.info(f"Collection {collection_id} deleted")
