"""Demo data: one admin, one librarian, one member and a small shelf of books."""
import logging
from typing import Dict

from accounts import hash_password
from library import Library
from models import Role

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    ("Admin", "admin@library.com", Role.ADMIN),
    ("Librarian", "librarian@library.com", Role.LIBRARIAN),
    ("User", "user@library.com", Role.MEMBER),
]

DEMO_BOOKS = [
    {"title": "Ulysses", "author": "James Joyce", "isbn": "9780199535675", "publisher": "Oxford", "published_year": 1922, "copies": 2},
    {"title": "Sapiens", "author": "Yuval Noah Harari", "isbn": "9780099590088", "publisher": "Vintage", "published_year": 2011, "copies": 3},
    {"title": "Effective C++", "author": "Scott Meyers", "isbn": "9780321334879", "publisher": "Addison-Wesley", "published_year": 2005, "copies": 1},
]


def seed_demo_data(lib: Library) -> Dict[str, int]:
    """Insert the demo rows that are missing. Safe to run repeatedly."""
    created = {"users": 0, "books": 0}
    password_hash = hash_password(DEMO_PASSWORD)

    for name, email, role in DEMO_USERS:
        if lib.accounts.get_user_by_email(email) is None:
            lib.add_user(name, email, password_hash, role)
            created["users"] += 1

    librarian = lib.accounts.get_user_by_email("librarian@library.com")
    for data in DEMO_BOOKS:
        if lib.catalog.find_by_isbn(data["isbn"]) is None:
            lib.add_book(created_by=librarian.id, **data)
            created["books"] += 1

    logger.info(f"Demo data seeded: {created}")
    return created
