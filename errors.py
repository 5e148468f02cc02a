from __future__ import annotations


class LibraryError(Exception):
    """Base class for business-rule failures raised by the lending core."""


class NotFoundError(LibraryError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, identifier: str | None = None) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity.capitalize()} not found")


class ConflictError(LibraryError):
    """The operation would break an invariant (duplicate, already returned, open loans)."""

    def __init__(self, message: str, active_borrows: int | None = None) -> None:
        self.active_borrows = active_borrows
        super().__init__(message)


class UnavailableError(LibraryError):
    def __init__(self, book_id: str) -> None:
        self.book_id = book_id
        super().__init__("Book is not available for borrowing")


class ForbiddenError(LibraryError):
    pass
