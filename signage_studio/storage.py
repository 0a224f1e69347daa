"""
@file_manager
Local file storage for uploads, static assets and downloaded generation results
"""

import os
import uuid
import logging
import mimetypes
from datetime import datetime
from typing import Dict, Optional

from werkzeug.utils import secure_filename

from .errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

_EXTENSIONS_BY_MIME = {
    'image/png': 'png',
    'image/jpeg': 'jpg',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'video/mp4': 'mp4',
    'video/quicktime': 'mov',
    'video/webm': 'webm',
}


class FileManager:
    """Handles file upload, validation, and storage operations"""

    def __init__(self, upload_folder: str, allowed_extensions: set, public_base_url: str):
        self.upload_folder = upload_folder
        self.allowed_extensions = allowed_extensions
        self.public_base_url = public_base_url.rstrip('/')
        os.makedirs(self.upload_folder, exist_ok=True)

    def is_allowed_file(self, filename: str) -> bool:
        """@file_validation - Check if file extension is allowed"""
        return ('.' in filename and
                filename.rsplit('.', 1)[1].lower() in self.allowed_extensions)

    @staticmethod
    def is_storage_id(value: str) -> bool:
        """A bare stored-file key rather than a URL or data URI"""
        return (bool(value) and
                not value.startswith(('http://', 'https://', 'data:')) and
                '/' not in value and ':' not in value)

    def path_for(self, storage_id: str) -> str:
        return os.path.join(self.upload_folder, secure_filename(storage_id))

    def get_url(self, storage_id: str) -> Optional[str]:
        """@storage_url - Public URL for a stored file, None when it is gone"""
        if not storage_id or not os.path.isfile(self.path_for(storage_id)):
            return None
        return f'{self.public_base_url}/uploads/{storage_id}'

    def _new_storage_id(self, filename: str) -> str:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_')
        return f'{timestamp}{uuid.uuid4().hex[:8]}_{filename}'

    def _describe(self, storage_id: str, original_name: str, mime_type: str) -> Dict:
        return {
            'storage_id': storage_id,
            'file_url': self.get_url(storage_id),
            'file_size': os.path.getsize(self.path_for(storage_id)),
            'mime_type': mime_type,
            'original_name': original_name,
        }

    def save_upload(self, file) -> Dict:
        """@file_upload - Save an uploaded werkzeug FileStorage and return its details"""
        if not file or not file.filename or not self.is_allowed_file(file.filename):
            raise ValidationError("Invalid file or file type")

        original_name = secure_filename(file.filename)
        storage_id = self._new_storage_id(original_name)

        try:
            file.save(self.path_for(storage_id))
        except OSError as e:
            logger.error(f"File save error: {e}")
            raise StorageError("Failed to save file to disk")

        mime_type = (file.mimetype if file.mimetype and file.mimetype != 'application/octet-stream'
                     else mimetypes.guess_type(original_name)[0] or 'application/octet-stream')
        logger.info(f"Stored upload {storage_id}")
        return self._describe(storage_id, original_name, mime_type)

    def store_bytes(self, data: bytes, mime_type: str, original_name: Optional[str] = None) -> Dict:
        """@file_store - Persist raw bytes, e.g. a downloaded generation result"""
        mime_type = (mime_type or 'application/octet-stream').split(';')[0].strip()
        if original_name:
            name = secure_filename(original_name)
        else:
            name = f"generated.{_EXTENSIONS_BY_MIME.get(mime_type, 'bin')}"
        storage_id = self._new_storage_id(name)

        try:
            with open(self.path_for(storage_id), 'wb') as handle:
                handle.write(data)
        except OSError as e:
            logger.error(f"File store error: {e}")
            raise StorageError("Failed to store file")

        logger.info(f"Stored {len(data)} bytes as {storage_id}")
        return self._describe(storage_id, name, mime_type)

    def delete(self, storage_id: Optional[str]) -> bool:
        """@file_deletion - Delete physical file from storage"""
        if not storage_id:
            return False
        file_path = self.path_for(storage_id)
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
        except OSError as e:
            logger.error(f"File deletion error: {e}")
        return False

    def total_size(self) -> int:
        total = 0
        for filename in os.listdir(self.upload_folder):
            filepath = os.path.join(self.upload_folder, filename)
            if os.path.isfile(filepath):
                total += os.path.getsize(filepath)
        return total
