"""
@configuration
Application configuration, server address discovery and logging setup
"""

import os
import socket
import time
import logging
from datetime import datetime
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ''):
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value in (None, ''):
        return default
    return int(value)


# =============================================================================
# @app_config - Application Configuration Class
# =============================================================================
class AppConfig:
    """Centralized application configuration, read from the environment"""

    SECRET_KEY = os.getenv('SIGNAGE_SECRET_KEY', 'your-secret-key-change-this-in-production')
    DB_PATH = os.getenv('SIGNAGE_DB_PATH', 'signage.db')
    UPLOAD_FOLDER = os.getenv('SIGNAGE_UPLOAD_FOLDER', 'uploads')
    LOG_FOLDER = os.getenv('SIGNAGE_LOG_FOLDER', 'logs')
    HOST = os.getenv('SIGNAGE_HOST', '0.0.0.0')
    PORT = _env_int('SIGNAGE_PORT', 5000)
    PUBLIC_BASE_URL = os.getenv('SIGNAGE_PUBLIC_BASE_URL', '')
    MAX_CONTENT_LENGTH = 500 * 1024 * 1024  # 500MB
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp', 'mp4', 'mov', 'webm'}
    LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

    # Authentication is stubbed: every user-scoped record belongs to this id
    TEMP_USER_ID = os.getenv('TEMP_USER_ID', 'user-1')

    FAL_API_KEY = os.getenv('FAL_API_KEY', '')
    FAL_API_BASE_URL = os.getenv('FAL_API_BASE_URL', 'https://fal.run')
    FAL_REQUEST_TIMEOUT = _env_float('FAL_REQUEST_TIMEOUT', 30.0)

    GENERATION_POLL_INTERVAL = _env_float('GENERATION_POLL_INTERVAL', 2.0)
    GENERATION_POLL_TIMEOUT = _env_float('GENERATION_POLL_TIMEOUT', 600.0)

    MENU_DEFAULT_LOGO_URL = os.getenv('MENU_DEFAULT_LOGO_URL', '')

    @staticmethod
    def get_server_ip() -> str:
        """@network_utils - Get server IP automatically"""
        try:
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            s.close()
            return ip
        except OSError:
            return "localhost"

    @classmethod
    def as_dict(cls, overrides: Optional[Dict] = None) -> Dict:
        """Flask-style settings dict, upper-case attributes only"""
        settings = {key: getattr(cls, key) for key in dir(cls) if key.isupper()}
        if overrides:
            settings.update(overrides)
        if not settings.get('PUBLIC_BASE_URL'):
            settings['PUBLIC_BASE_URL'] = f"http://{cls.get_server_ip()}:{settings['PORT']}"
        settings['PUBLIC_BASE_URL'] = settings['PUBLIC_BASE_URL'].rstrip('/')
        return settings


def now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit of every record"""
    return int(time.time() * 1000)


def configure_logging(log_folder: str, log_format: str = AppConfig.LOG_FORMAT) -> None:
    """@logging_setup - Daily log file plus console output"""
    os.makedirs(log_folder, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        handlers=[
            logging.FileHandler(os.path.join(log_folder, f'signage_{datetime.now().strftime("%Y%m%d")}.log')),
            logging.StreamHandler()
        ]
    )
