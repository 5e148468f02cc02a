from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Role(str, Enum):
    MEMBER = "MEMBER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, raw: "str | Role") -> "Role":
        if isinstance(raw, Role):
            return raw
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {raw}") from None


class Book:
    """A catalog title and its copy counters."""

    def __init__(self, id: str, title: str, author: str, total_copies: int, available_copies: int,
                 isbn: str | None = None, publisher: str | None = None, published_year: int | None = None,
                 created_by_id: str | None = None, updated_by_id: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn
        self.publisher = publisher
        self.published_year = published_year
        self.total_copies = total_copies
        self.available_copies = available_copies
        self.created_by_id = created_by_id
        self.updated_by_id = updated_by_id
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_copies}/{self.total_copies} available)"

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "published_year": self.published_year,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_by_id": self.created_by_id,
            "updated_by_id": self.updated_by_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            total_copies=data["total_copies"],
            available_copies=data["available_copies"],
            isbn=data.get("isbn"),
            publisher=data.get("publisher"),
            published_year=data.get("published_year"),
            created_by_id=data.get("created_by_id"),
            updated_by_id=data.get("updated_by_id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class User:
    def __init__(self, id: str, name: str, email: str, password_hash: str, role: Role = Role.MEMBER,
                 refresh_token: str | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.password_hash = password_hash
        self.role = Role.parse(role)
        self.refresh_token = refresh_token
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} <{self.email}> [{self.role.value}]"

    def to_dict(self) -> dict:
        # Credentials stay out of transfer objects.
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            role=data.get("role", Role.MEMBER),
            refresh_token=data.get("refresh_token"),
            created_at=data.get("created_at"),
        )


class BorrowRecord:
    """One loan of one copy. returned_at is None while the loan is active."""

    def __init__(self, id: str, user_id: str, book_id: str, borrowed_at: str,
                 returned_at: str | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.borrowed_at = borrowed_at
        self.returned_at = returned_at

    @property
    def is_active(self) -> bool:
        return self.returned_at is None

    @property
    def status(self) -> str:
        return "ACTIVE" if self.is_active else "RETURNED"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "borrowed_at": self.borrowed_at,
            "returned_at": self.returned_at,
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict) -> "BorrowRecord":
        return BorrowRecord(
            id=data["id"],
            user_id=data["user_id"],
            book_id=data["book_id"],
            borrowed_at=data["borrowed_at"],
            returned_at=data.get("returned_at"),
        )


class Fine:
    def __init__(self, id: str, borrow_record_id: str, amount: Decimal, reason: str | None = None,
                 paid: bool = False, created_at: str | None = None) -> None:
        self.id = id
        self.borrow_record_id = borrow_record_id
        self.amount = Decimal(amount)
        self.reason = reason
        self.paid = bool(paid)
        self.created_at = created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "borrow_record_id": self.borrow_record_id,
            "amount": str(self.amount),
            "reason": self.reason,
            "paid": self.paid,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Fine":
        return Fine(
            id=data["id"],
            borrow_record_id=data["borrow_record_id"],
            amount=Decimal(str(data["amount"])),
            reason=data.get("reason"),
            paid=bool(data.get("paid", False)),
            created_at=data.get("created_at"),
        )


class WishlistEntry:
    def __init__(self, id: str, user_id: str, book_id: str, notes: str | None = None,
                 added_at: str | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.notes = notes
        self.added_at = added_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "notes": self.notes,
            "added_at": self.added_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "WishlistEntry":
        return WishlistEntry(
            id=data["id"],
            user_id=data["user_id"],
            book_id=data["book_id"],
            notes=data.get("notes"),
            added_at=data.get("added_at"),
        )
