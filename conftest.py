import pytest

from library import Library
from models import Role

PASSWORD_HASH = "stored-hash-placeholder"


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # A unique database file per test; LIBRARY_DB_FILE lets the CLI and API find it too
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", path)
    return path


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def make_user(lib):
    counter = {"n": 0}

    def _make(role=Role.MEMBER, name=None):
        counter["n"] += 1
        n = counter["n"]
        return lib.add_user(name or f"User {n}", f"user{n}@example.com", PASSWORD_HASH, role)

    return _make


@pytest.fixture
def make_book(lib):
    def _make(copies=1, title="Ulysses", author="James Joyce", **kwargs):
        return lib.add_book(title, author, copies=copies, **kwargs)

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, name="Admin")


@pytest.fixture
def librarian(make_user):
    return make_user(Role.LIBRARIAN, name="Librarian")
