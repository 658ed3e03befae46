import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass
class Settings:
    # Storage
    db_file: str = os.getenv("BOOKMEMOIR_DB_FILE", "bookmemoir.db")

    # Google Books
    google_books_base_url: str = os.getenv("GOOGLE_BOOKS_BASE_URL", "https://www.googleapis.com/books/v1")
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    # None keeps the httpx default
    google_books_timeout: Optional[float] = _optional_float("GOOGLE_BOOKS_TIMEOUT")
    enable_google_books: bool = os.getenv("ENABLE_GOOGLE_BOOKS", "True").lower() in ("true", "1", "yes")

    # API
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Application
    app_name: str = os.getenv("APP_NAME", "BookMemoir")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")

    # Cover uploads
    max_upload_size: int = int(os.getenv("MAX_UPLOAD_SIZE", "10485760"))  # 10MB
    allowed_image_extensions: list = field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"])


settings = Settings()


def setup_logging(verbose: bool = False) -> None:
    """Send log records to the console through Rich."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = RichHandler(console=Console(stderr=True), show_time=True, show_path=False, rich_tracebacks=True)
    handler.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
