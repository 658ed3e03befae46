import logging
import sqlite3
from typing import Optional

from bookmemoir.config import settings

logger = logging.getLogger(__name__)

# Default database file; Library(db_file=...) overrides it per instance.
DATABASE_FILE = settings.db_file

# Columns added after the first schema. Existing databases get them through
# ALTER TABLE, so older rows read back as NULL.
OPTIONAL_COLUMNS = {
    "cover_url": "TEXT",
    "cover_image": "BLOB",
    "page_count": "INTEGER",
    "start_date": "TEXT",
    "finish_date": "TEXT",
    "notes": "TEXT",
    "summary": "TEXT",
}

BOOK_COLUMNS = (
    "id", "title", "author", "cover_url", "cover_image", "page_count", "status",
    "start_date", "finish_date", "notes", "summary", "created_at",
)


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the books table if it does not exist and add any missing columns."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'To-Read',
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("PRAGMA table_info(books)")
        columns = [column[1] for column in cursor.fetchall()]
        for name, column_type in OPTIONAL_COLUMNS.items():
            if name not in columns:
                logger.debug(f"Adding column books.{name}")
                cursor.execute(f"ALTER TABLE books ADD COLUMN {name} {column_type}")

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_status ON books(status)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the database file and schema if needed."""
    create_tables(db_file)
