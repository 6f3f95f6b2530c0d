import os
import random
from datetime import datetime, timezone

import pytest

from circulation.config import Settings
from circulation.library import Library
from circulation.services.sqlite_store import SQLiteStore

NOW = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path, request):
    # A unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    store = SQLiteStore(db_file)
    yield store
    store.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def lib(store):
    lib = Library(store, Settings())
    lib.members.rng = random.Random(1234)
    yield lib
    lib.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def book(lib):
    author = lib.catalog.add_author("Ursula K. Le Guin")
    return lib.catalog.add_book("A Wizard of Earthsea", 2, isbn="9780547773742", author_id=author.id)


@pytest.fixture
def member(lib):
    profile = lib.members.add_profile("Ada Lovelace", "ada@example.com", "555-0100")
    return lib.members.register_member(profile.id)
