import logging
import sqlite3
from typing import Dict, List

logger = logging.getLogger(__name__)

SCHEMA = {
    "profiles": """
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            full_name TEXT NOT NULL,
            email TEXT UNIQUE NOT NULL,
            phone TEXT,
            role TEXT NOT NULL DEFAULT 'member' CHECK(role IN ('member', 'librarian', 'admin')),
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
    "authors": """
        CREATE TABLE IF NOT EXISTS authors (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
    "categories": """
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            name TEXT UNIQUE NOT NULL,
            description TEXT,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
    "books": """
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            isbn TEXT,
            author_id TEXT REFERENCES authors(id) ON DELETE SET NULL,
            category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
            publisher TEXT,
            publication_year INTEGER,
            pages INTEGER,
            language TEXT NOT NULL DEFAULT 'English',
            description TEXT,
            location TEXT,
            total_copies INTEGER NOT NULL DEFAULT 1 CHECK(total_copies >= 0),
            available_copies INTEGER NOT NULL DEFAULT 1
                CHECK(available_copies >= 0 AND available_copies <= total_copies),
            status TEXT NOT NULL DEFAULT 'available'
                CHECK(status IN ('available', 'checked_out', 'reserved', 'maintenance', 'lost')),
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
    "members": """
        CREATE TABLE IF NOT EXISTS members (
            id TEXT PRIMARY KEY,
            profile_id TEXT UNIQUE REFERENCES profiles(id) ON DELETE SET NULL,
            membership_number TEXT UNIQUE NOT NULL,
            membership_type TEXT NOT NULL DEFAULT 'standard'
                CHECK(membership_type IN ('standard', 'premium', 'student')),
            status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'suspended', 'expired')),
            join_date DATE,
            expiry_date DATE,
            max_books_allowed INTEGER NOT NULL DEFAULT 5 CHECK(max_books_allowed > 0),
            current_books_issued INTEGER NOT NULL DEFAULT 0
                CHECK(current_books_issued >= 0 AND current_books_issued <= max_books_allowed),
            fine_amount NUMERIC NOT NULL DEFAULT 0 CHECK(fine_amount >= 0),
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
    "transactions": """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            transaction_type TEXT NOT NULL
                CHECK(transaction_type IN ('checkout', 'return', 'renewal', 'reservation')),
            book_id TEXT NOT NULL REFERENCES books(id),
            member_id TEXT NOT NULL REFERENCES members(id),
            librarian_id TEXT REFERENCES profiles(id),
            checkout_date TIMESTAMP,
            due_date TIMESTAMP,
            return_date TIMESTAMP,
            fine_amount NUMERIC NOT NULL DEFAULT 0,
            notes TEXT,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)",
    "CREATE INDEX IF NOT EXISTS idx_books_isbn ON books(isbn)",
    "CREATE INDEX IF NOT EXISTS idx_members_status ON members(status)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_book ON transactions(book_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_member ON transactions(member_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_open ON transactions(transaction_type, return_date)",
]


def get_db_connection(db_file: str) -> sqlite3.Connection:
    """Open a connection to the SQLite file with dict-like rows and foreign keys on."""
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def create_tables(db_file: str) -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        for ddl in SCHEMA.values():
            cursor.execute(ddl)
        for ddl in INDEXES:
            cursor.execute(ddl)
        conn.commit()
    finally:
        conn.close()


def table_columns(db_file: str) -> Dict[str, List[str]]:
    """Column names per table, read back from the live schema."""
    conn = get_db_connection(db_file)
    try:
        columns = {}
        for table in SCHEMA:
            cursor = conn.execute(f"PRAGMA table_info({table})")
            columns[table] = [row[1] for row in cursor.fetchall()]
        return columns
    finally:
        conn.close()


def initialize_database(db_file: str) -> Dict[str, List[str]]:
    """Prepare the database file and return its column map."""
    create_tables(db_file)
    logger.debug(f"Database ready: {db_file}")
    return table_columns(db_file)
