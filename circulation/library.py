import logging
from typing import Optional

from circulation.catalog import Catalog
from circulation.config import Settings, settings as default_settings
from circulation.desk import CirculationDesk
from circulation.errors import ErrorKind, StoreError
from circulation.ledger import TransactionLedger
from circulation.membership import MembershipRegistry
from circulation.reports import ReportingAggregator
from circulation.services.rest_store import RestStore
from circulation.services.sqlite_store import SQLiteStore
from circulation.services.store import Store

logger = logging.getLogger(__name__)


def open_store(config: Settings, db_file: Optional[str] = None) -> Store:
    """Build the store backend selected by STORE_BACKEND."""
    backend = (config.store_backend or "sqlite").lower()
    if backend == "sqlite":
        return SQLiteStore(db_file or config.database_file)
    if backend == "rest":
        if not config.store_url:
            raise StoreError("STORE_URL must be set for the rest backend.", ErrorKind.INVALID_INPUT)
        return RestStore(config.store_url, api_key=config.store_api_key, timeout=config.store_timeout)
    raise StoreError(f"Unknown store backend: {config.store_backend}", ErrorKind.INVALID_INPUT)


class Library:
    """Wires one store into the catalog, membership, ledger, desk and reports."""

    def __init__(self, store: Store, config: Optional[Settings] = None) -> None:
        config = config or default_settings
        self.store = store
        self.settings = config
        self.catalog = Catalog(store)
        self.members = MembershipRegistry(
            store, term_days=config.membership_term_days, number_attempts=config.membership_number_attempts
        )
        self.ledger = TransactionLedger(store)
        self.desk = CirculationDesk(
            store,
            self.catalog,
            self.members,
            self.ledger,
            fine_per_day=config.fine_per_day,
            fine_cap=config.fine_cap,
            max_renewals=config.max_renewals,
        )
        self.reports = ReportingAggregator(self.catalog, self.members, self.ledger)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, db_file: Optional[str] = None) -> "Library":
        config = config or default_settings
        store = open_store(config, db_file)
        logger.info(f"Library opened with {type(store).__name__}")
        return cls(store, config)

    def close(self) -> None:
        self.store.close()
