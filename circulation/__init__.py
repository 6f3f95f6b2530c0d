"""Library Circulation - Core Application Package

This package contains the circulation service modules including:
- API endpoints (api.py)
- CLI interface (cli.py)
- Circulation rules and loan lifecycle (rules.py, ledger.py, desk.py)
- Catalog and membership records (catalog.py, membership.py, models.py)
- Reports and QR payloads (reports.py, qr.py)
- Store backends (services/)
"""

__version__ = "1.0.0"
