"""Booklog - personal book catalog with lending tracking.

This package contains the application modules including:
- API endpoints (api.py)
- Library facade used by the API and the CLI (library.py)
- CLI interface (main.py)
- Data models (book.py)
- Database layer (database.py)
- Core services: authentication, repository, queries, lending, statistics (services/)
"""

__version__ = "1.0.0"
