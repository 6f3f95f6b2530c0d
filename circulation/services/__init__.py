"""Circulation - Store Services Package

This package contains the data store backends:
- Store contract, filter conditions and joins (store.py)
- Local SQLite backend (sqlite_store.py)
- Hosted PostgREST backend over httpx (rest_store.py)
"""
