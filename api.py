import logging
import sqlite3
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

import policy
from config import settings
from database import read_connection
from errors import ConflictError, ForbiddenError, LibraryError, NotFoundError, UnavailableError
from library import Library
from models import Role, User, utcnow

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Error mapping ---
# status code and machine-readable code per failure kind
_ERROR_RESPONSES = [
    (NotFoundError, 404, "not_found"),
    (ForbiddenError, 403, "forbidden"),
    (UnavailableError, 409, "unavailable"),
    (ConflictError, 409, "conflict"),
]


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    for error_type, status_code, code in _ERROR_RESPONSES:
        if isinstance(exc, error_type):
            body = {"detail": str(exc), "code": code}
            if isinstance(exc, ConflictError) and exc.active_borrows is not None:
                body["active_borrows"] = exc.active_borrows
            return JSONResponse(status_code=status_code, content=body)
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "error"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid"})


# --- Identity ---
# Authentication happens upstream; the gateway forwards the caller's id.
user_id_header = APIKeyHeader(name="X-User-Id")


def get_current_user(user_id: str = Security(user_id_header)) -> User:
    """Dependency resolving the requesting user; unknown ids are rejected."""
    try:
        return library.get_user(user_id)
    except NotFoundError:
        raise ForbiddenError("Unknown requester")


def requires(action: str):
    def dependency(user: User = Depends(get_current_user)) -> User:
        policy.require(user.role, action)
        return user
    return dependency


# --- Models ---
class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None
    copies: int = Field(default=1, ge=0)


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None
    total_copies: Optional[int] = Field(default=None, ge=0)


class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None
    total_copies: int
    available_copies: int
    created_by_id: Optional[str] = None
    updated_by_id: Optional[str] = None


class UserCreateModel(BaseModel):
    name: str
    email: str
    password_hash: str
    role: Role = Role.MEMBER


class UserUpdateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    role: Role


class BorrowCreateModel(BaseModel):
    book_id: str


class BorrowRecordModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    borrowed_at: str
    returned_at: Optional[str] = None
    status: str


class FineCreateModel(BaseModel):
    borrow_record_id: str
    amount: Decimal = Field(ge=0)
    reason: Optional[str] = None


class FineUpdateModel(BaseModel):
    amount: Optional[Decimal] = Field(default=None, ge=0)
    reason: Optional[str] = None
    paid: Optional[bool] = None


class FineModel(BaseModel):
    id: str
    borrow_record_id: str
    amount: Decimal
    reason: Optional[str] = None
    paid: bool
    created_at: Optional[str] = None


class WishlistAddModel(BaseModel):
    book_id: str
    notes: Optional[str] = None


class WishlistEntryModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    notes: Optional[str] = None
    added_at: Optional[str] = None


class CascadeReportModel(BaseModel):
    entity: str
    entity_id: str
    fines: int
    borrow_records: int
    wishlist_entries: int
    provenance_cleared: int


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    active_borrows: int
    total_users: int
    unpaid_fines: str


# --- Health ---
@app.get("/health")
async def health():
    """Lightweight health endpoint with a quick database probe."""
    db_ok = True
    try:
        with read_connection(library.db_file) as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": utcnow(),
        "db": db_ok,
    }


@app.get("/stats", response_model=StatsModel)
def get_stats():
    return library.get_statistics()


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books():
    return [b.to_dict() for b in library.list_books()]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    return library.get_book(book_id).to_dict()


@app.post("/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateModel, user: User = Depends(requires("book:create"))):
    book = library.add_book(
        payload.title, payload.author, user.id,
        isbn=payload.isbn, publisher=payload.publisher,
        published_year=payload.published_year, copies=payload.copies,
    )
    return book.to_dict()


@app.put("/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, payload: BookUpdateModel, user: User = Depends(requires("book:update"))):
    fields = payload.model_dump(exclude_none=True)
    return library.update_book(book_id, user.id, **fields).to_dict()


@app.delete("/books/{book_id}", response_model=CascadeReportModel)
def delete_book(book_id: str, user: User = Depends(requires("book:delete"))):
    return library.delete_book(book_id).to_dict()


# --- Users ---
@app.get("/users", response_model=List[UserModel])
def list_users(user: User = Depends(requires("user:list"))):
    return [u.to_dict() for u in library.accounts.list_users()]


@app.post("/users", response_model=UserModel, status_code=201)
def create_user(payload: UserCreateModel, user: User = Depends(requires("user:create"))):
    return library.add_user(payload.name, payload.email, payload.password_hash, payload.role).to_dict()


@app.get("/users/{user_id}", response_model=UserModel)
def get_user(user_id: str, user: User = Depends(get_current_user)):
    if user_id != user.id and not policy.is_allowed(user.role, "user:list"):
        raise ForbiddenError("You can only view your own profile")
    return library.get_user(user_id).to_dict()


@app.put("/users/{user_id}", response_model=UserModel)
def update_user(user_id: str, payload: UserUpdateModel, user: User = Depends(requires("user:update"))):
    return library.accounts.update_user(user_id, **payload.model_dump(exclude_none=True)).to_dict()


@app.delete("/users/{user_id}", response_model=CascadeReportModel)
def delete_user(user_id: str, user: User = Depends(requires("user:delete"))):
    return library.delete_user(user_id, requested_by=user).to_dict()


# --- Borrow records ---
@app.get("/borrow-records", response_model=List[BorrowRecordModel])
def list_borrow_records(user: User = Depends(requires("borrow:list_all"))):
    return [r.to_dict() for r in library.borrows.list_all()]


@app.get("/borrow-records/my", response_model=List[BorrowRecordModel])
def my_borrow_records(user: User = Depends(get_current_user)):
    return [r.to_dict() for r in library.borrows.list_for_user(user.id)]


@app.get("/borrow-records/{record_id}", response_model=BorrowRecordModel)
def get_borrow_record(record_id: str, user: User = Depends(get_current_user)):
    record = library.borrows.get_borrow_record(record_id)
    if record.user_id != user.id and not policy.is_allowed(user.role, "borrow:list_all"):
        raise ForbiddenError("You can only view your own borrow records")
    return record.to_dict()


@app.post("/borrow-records", response_model=BorrowRecordModel, status_code=201)
def borrow_book(payload: BorrowCreateModel, user: User = Depends(requires("borrow:create"))):
    return library.borrow(user.id, payload.book_id).to_dict()


@app.post("/borrow-records/{record_id}/return", response_model=BorrowRecordModel)
def return_book(record_id: str, user: User = Depends(requires("borrow:return"))):
    return library.return_book(record_id, user.id).to_dict()


@app.delete("/borrow-records/{record_id}", status_code=204)
def delete_borrow_record(record_id: str, user: User = Depends(requires("borrow:delete"))):
    library.borrows.delete_borrow_record(record_id)
    return Response(status_code=204)


@app.get("/borrow-records/{record_id}/fines", response_model=List[FineModel])
def fines_for_record(record_id: str, user: User = Depends(get_current_user)):
    record = library.borrows.get_borrow_record(record_id)
    if record.user_id != user.id and not policy.is_allowed(user.role, "fine:create"):
        raise ForbiddenError("You can only view fines on your own borrow records")
    return [f.to_dict() for f in library.fines.list_for_borrow_record(record_id)]


# --- Fines ---
@app.post("/fines", response_model=FineModel, status_code=201)
def create_fine(payload: FineCreateModel, user: User = Depends(requires("fine:create"))):
    return library.assess_fine(payload.borrow_record_id, payload.amount, payload.reason).to_dict()


@app.put("/fines/{fine_id}", response_model=FineModel)
def update_fine(fine_id: str, payload: FineUpdateModel, user: User = Depends(requires("fine:update"))):
    return library.fines.update_fine(fine_id, **payload.model_dump(exclude_none=True)).to_dict()


@app.delete("/fines/{fine_id}", status_code=204)
def delete_fine(fine_id: str, user: User = Depends(requires("fine:delete"))):
    library.fines.delete_fine(fine_id)
    return Response(status_code=204)


# --- Wishlist ---
@app.get("/wishlist", response_model=List[WishlistEntryModel])
def my_wishlist(user: User = Depends(requires("wishlist:manage"))):
    return [e.to_dict() for e in library.wishlist.list_for_user(user.id)]


@app.post("/wishlist", response_model=WishlistEntryModel, status_code=201)
def add_to_wishlist(payload: WishlistAddModel, user: User = Depends(requires("wishlist:manage"))):
    return library.wishlist.add(user.id, payload.book_id, payload.notes).to_dict()


@app.delete("/wishlist/{book_id}", status_code=204)
def remove_from_wishlist(book_id: str, user: User = Depends(requires("wishlist:manage"))):
    library.wishlist.remove(user.id, book_id)
    return Response(status_code=204)
