"""
@database_manager
SQLite persistence for the signage catalog and the generation pipeline
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS locations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        branding TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_locations_slug ON locations (slug)',
    '''
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        price REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'CZK',
        category TEXT,
        description TEXT,
        image TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_products_category ON products (category)',
    '''
    CREATE TABLE IF NOT EXISTS templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        layout_type TEXT NOT NULL,
        columns INTEGER,
        show_prices BOOLEAN NOT NULL DEFAULT 1,
        show_images BOOLEAN NOT NULL DEFAULT 1,
        config TEXT,
        is_default BOOLEAN NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS screens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        screen_id TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        location_id INTEGER NOT NULL,
        mode TEXT NOT NULL,
        dynamic_config TEXT,
        static_config TEXT,
        layout_config TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        FOREIGN KEY (location_id) REFERENCES locations (id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS static_assets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        storage_id TEXT,
        file_url TEXT NOT NULL,
        file_size INTEGER NOT NULL DEFAULT 0,
        mime_type TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS generations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        generation_type TEXT NOT NULL,
        type TEXT NOT NULL,
        model TEXT NOT NULL,
        prompt TEXT NOT NULL,
        negative_prompt TEXT,
        width INTEGER,
        height INTEGER,
        num_images INTEGER,
        seed INTEGER,
        guidance_scale REAL,
        source_image_url TEXT,
        style_image_id INTEGER,
        product_config TEXT,
        menu_config TEXT,
        video_config TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        fal_request_id TEXT,
        generated_file_ids TEXT NOT NULL DEFAULT '[]',
        error_message TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        completed_at INTEGER
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_generations_user ON generations (user_id, created_at)',
    'CREATE INDEX IF NOT EXISTS idx_generations_status ON generations (status)',
    '''
    CREATE TABLE IF NOT EXISTS generated_files (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        storage_id TEXT NOT NULL,
        file_url TEXT NOT NULL,
        file_type TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        file_size INTEGER NOT NULL DEFAULT 0,
        width INTEGER,
        height INTEGER,
        generation_id INTEGER,
        generation_type TEXT,
        is_original BOOLEAN NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL,
        FOREIGN KEY (generation_id) REFERENCES generations (id)
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_generated_files_generation ON generated_files (generation_id)',
    '''
    CREATE TABLE IF NOT EXISTS collections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        file_ids TEXT NOT NULL DEFAULT '[]',
        is_public BOOLEAN NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
]


class DatabaseManager:
    """Handles connections and schema creation"""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def get_connection(self) -> sqlite3.Connection:
        """@db_connection - Get database connection"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and always closes"""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_database(self) -> None:
        """@db_init - Initialize database with all required tables"""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Database initialized successfully at {self.db_path}")

    def fetch_one(self, query: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        with self.transaction() as conn:
            return conn.execute(query, tuple(params)).fetchone()

    def fetch_all(self, query: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self.transaction() as conn:
            return conn.execute(query, tuple(params)).fetchall()


def encode_json(value) -> Optional[str]:
    return None if value is None else json.dumps(value)


def row_to_dict(row: Optional[sqlite3.Row], json_fields: Iterable[str] = (),
                bool_fields: Iterable[str] = ()) -> Optional[Dict]:
    """Turn a row into a plain dict, decoding JSON text and SQLite booleans"""
    if row is None:
        return None
    record = dict(row)
    for field in json_fields:
        if record.get(field) is not None:
            record[field] = json.loads(record[field])
    for field in bool_fields:
        if field in record:
            record[field] = bool(record[field])
    return record
