"""
@generation_service
Generation records and the files they produced
"""

import logging
from typing import Dict, List, Optional

from .config import now_ms
from .database import DatabaseManager, encode_json, row_to_dict
from .errors import NotFoundError, ValidationError
from .storage import FileManager

logger = logging.getLogger(__name__)

GENERATION_STATUSES = ('pending', 'processing', 'completed', 'failed')
ACTIVE_STATUSES = ('pending', 'processing')
IMAGE_TYPES = ('free', 'product', 'menu', 'edit')
VIDEO_TYPES = ('image-to-video', 'text-to-video')

_JSON_FIELDS = ('product_config', 'menu_config', 'video_config', 'generated_file_ids')


class GenerationService:
    """Handles generation records, their status transitions and generated files"""

    def __init__(self, db: DatabaseManager, file_manager: FileManager):
        self.db = db
        self.file_manager = file_manager

    @staticmethod
    def _to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, json_fields=_JSON_FIELDS)

    @staticmethod
    def _file_to_dict(row) -> Optional[Dict]:
        return row_to_dict(row, bool_fields=('is_original',))

    # =========================================================================
    # @generation_records
    # =========================================================================
    def create_generation(self, data: Dict) -> Dict:
        """@generation_creation - New record in 'pending' state"""
        generation_type = data.get('generation_type', 'image')
        allowed = IMAGE_TYPES if generation_type == 'image' else VIDEO_TYPES
        if generation_type not in ('image', 'video'):
            raise ValidationError("generation_type must be image or video")
        if data.get('type') not in allowed:
            raise ValidationError(f"type must be one of: {', '.join(allowed)}")
        if not data.get('model'):
            raise ValidationError("model is required")
        if not data.get('user_id'):
            raise ValidationError("user_id is required")

        now = now_ms()
        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO generations (user_id, generation_type, type, model, prompt, negative_prompt,
                                         width, height, num_images, seed, guidance_scale, source_image_url,
                                         style_image_id, product_config, menu_config, video_config,
                                         status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            ''', (
                data['user_id'], generation_type, data['type'], data['model'], data.get('prompt') or '',
                data.get('negative_prompt'), data.get('width'), data.get('height'), data.get('num_images'),
                data.get('seed'), data.get('guidance_scale'), data.get('source_image_url'),
                data.get('style_image_id'), encode_json(data.get('product_config')),
                encode_json(data.get('menu_config')), encode_json(data.get('video_config')),
                now, now
            ))
            generation_id = cursor.lastrowid

        logger.info(f"Generation {generation_id} ({generation_type}/{data['type']}, {data['model']}) created")
        return self.get_generation(generation_id)

    def get_generation(self, generation_id: int) -> Dict:
        generation = self._to_dict(self.db.fetch_one('SELECT * FROM generations WHERE id = ?', (generation_id,)))
        if not generation:
            raise NotFoundError('Generation', generation_id)
        return generation

    def list_generations(self, user_id: str, generation_type: Optional[str] = None,
                         type: Optional[str] = None, status: Optional[str] = None) -> List[Dict]:
        query = 'SELECT * FROM generations WHERE user_id = ?'
        params = [user_id]
        if generation_type:
            query += ' AND generation_type = ?'
            params.append(generation_type)
        if type:
            query += ' AND type = ?'
            params.append(type)
        if status:
            query += ' AND status = ?'
            params.append(status)
        query += ' ORDER BY created_at DESC, id DESC'
        return [self._to_dict(row) for row in self.db.fetch_all(query, params)]

    def list_unfinished(self) -> List[Dict]:
        """Records still waiting on fal.ai, for resuming polls after a restart"""
        rows = self.db.fetch_all('''
            SELECT * FROM generations
            WHERE status IN ('pending', 'processing') AND fal_request_id IS NOT NULL
            ORDER BY id
        ''')
        return [self._to_dict(row) for row in rows]

    def update_status(self, generation_id: int, status: str, fal_request_id: Optional[str] = None,
                      generated_file_ids: Optional[List[int]] = None, error_message: Optional[str] = None,
                      completed_at: Optional[int] = None) -> Dict:
        """@status_update - Last write wins; only the given fields change"""
        if status not in GENERATION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(GENERATION_STATUSES)}")
        self.get_generation(generation_id)

        now = now_ms()
        assignments = ['status = ?', 'updated_at = ?']
        params = [status, now]
        if fal_request_id is not None:
            assignments.append('fal_request_id = ?')
            params.append(fal_request_id)
        if generated_file_ids is not None:
            assignments.append('generated_file_ids = ?')
            params.append(encode_json(list(generated_file_ids)))
        if error_message is not None:
            assignments.append('error_message = ?')
            params.append(error_message)
        if status == 'completed':
            assignments.append('completed_at = ?')
            params.append(completed_at or now)
            if error_message is None:
                assignments.append('error_message = NULL')

        with self.db.transaction() as conn:
            conn.execute(f"UPDATE generations SET {', '.join(assignments)} WHERE id = ?", (*params, generation_id))

        if status == 'failed':
            logger.warning(f"Generation {generation_id} failed: {error_message}")
        else:
            logger.info(f"Generation {generation_id} is {status}")
        return self.get_generation(generation_id)

    def mark_failed(self, generation_id: int, message: str) -> Dict:
        return self.update_status(generation_id, 'failed', error_message=message or 'Generation failed')

    # =========================================================================
    # @generated_files
    # =========================================================================
    def create_generated_file(self, data: Dict) -> Dict:
        now = now_ms()
        with self.db.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO generated_files (user_id, storage_id, file_url, file_type, mime_type, file_size,
                                             width, height, generation_id, generation_type, is_original, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                data['user_id'], data['storage_id'], data['file_url'], data['file_type'], data['mime_type'],
                int(data.get('file_size') or 0), data.get('width'), data.get('height'),
                data.get('generation_id'), data.get('generation_type'), bool(data.get('is_original', True)), now
            ))
            file_id = cursor.lastrowid
        logger.info(f"Generated file {file_id} recorded for generation {data.get('generation_id')}")
        return self.get_generated_file(file_id)

    def get_generated_file(self, file_id: int) -> Dict:
        record = self._file_to_dict(self.db.fetch_one('SELECT * FROM generated_files WHERE id = ?', (file_id,)))
        if not record:
            raise NotFoundError('Generated file', file_id)
        return record

    def list_files_for_generation(self, generation_id: int) -> List[Dict]:
        rows = self.db.fetch_all(
            'SELECT * FROM generated_files WHERE generation_id = ? ORDER BY id', (generation_id,))
        return [self._file_to_dict(row) for row in rows]

    def list_files_for_user(self, user_id: str, file_type: Optional[str] = None) -> List[Dict]:
        query = 'SELECT * FROM generated_files WHERE user_id = ?'
        params = [user_id]
        if file_type:
            query += ' AND file_type = ?'
            params.append(file_type)
        query += ' ORDER BY created_at DESC, id DESC'
        return [self._file_to_dict(row) for row in self.db.fetch_all(query, params)]

    def delete_generated_file(self, file_id: int) -> None:
        """@file_deletion - Remove a file everywhere it is referenced"""
        record = self.get_generated_file(file_id)

        with self.db.transaction() as conn:
            conn.execute('DELETE FROM generated_files WHERE id = ?', (file_id,))
            for row in conn.execute("SELECT id, file_ids FROM collections WHERE file_ids LIKE ?",
                                    (f'%{file_id}%',)).fetchall():
                collection = row_to_dict(row, json_fields=('file_ids',))
                if file_id in collection['file_ids']:
                    remaining = [fid for fid in collection['file_ids'] if fid != file_id]
                    conn.execute('UPDATE collections SET file_ids = ?, updated_at = ? WHERE id = ?',
                                 (encode_json(remaining), now_ms(), collection['id']))
            if record['generation_id'] is not None:
                row = conn.execute('SELECT generated_file_ids FROM generations WHERE id = ?',
                                   (record['generation_id'],)).fetchone()
                if row is not None:
                    remaining = [fid for fid in row_to_dict(row, json_fields=('generated_file_ids',))
                                 ['generated_file_ids'] if fid != file_id]
                    conn.execute('UPDATE generations SET generated_file_ids = ?, updated_at = ? WHERE id = ?',
                                 (encode_json(remaining), now_ms(), record['generation_id']))

        self.file_manager.delete(record['storage_id'])
        logger.info(f"Generated file {file_id} deleted")
