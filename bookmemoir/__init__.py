"""BookMemoir - Core Application Package

This package contains the application modules including:
- Data model and reading-status transitions (book.py)
- SQLite record store (library.py, database.py)
- Shelf views and actions (presenter.py)
- The add-book form (add_flow.py)
- CLI interface (main.py) and HTTP API (api.py)
"""

__version__ = "1.0.0"
