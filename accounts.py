import logging
import sqlite3
from typing import List, Optional, Union

import bcrypt

from database import read_connection, transaction
from errors import ConflictError, NotFoundError
from models import Role, User, new_id, utcnow

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Salted bcrypt hash, as stored in users.password_hash."""
    if not password:
        raise ValueError("Password cannot be empty.")
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


class AccountDirectory:
    """User accounts. Credentials arrive already hashed; nothing here authenticates."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def create_user(self, name: str, email: str, password_hash: str,
                    role: Union[Role, str] = Role.MEMBER) -> User:
        if not name or not email or not password_hash:
            raise ValueError("Missing required fields: email, name, password_hash")
        user = User(id=new_id(), name=name, email=email, password_hash=password_hash,
                    role=role, created_at=utcnow())
        with transaction(self.db_file) as conn:
            if self._email_taken(conn, user.email):
                raise ConflictError("Email already exists")
            try:
                conn.execute(
                    "INSERT INTO users (id, name, email, password_hash, role, refresh_token, created_at) "
                    "VALUES (?, ?, ?, ?, ?, NULL, ?)",
                    (user.id, user.name, user.email, user.password_hash, user.role.value, user.created_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Email already exists") from e
        logger.info(f"User {user.id} created with role {user.role.value}")
        return user

    def update_user(self, user_id: str, *, name: Optional[str] = None, email: Optional[str] = None,
                    role: Optional[Union[Role, str]] = None) -> User:
        update_fields = {}
        if name is not None and name.strip():
            update_fields["name"] = name.strip()
        if email is not None and email.strip():
            update_fields["email"] = email.strip().lower()
        if role is not None:
            update_fields["role"] = Role.parse(role).value

        if not update_fields:
            raise ValueError("Nothing to update. Provide name, email and/or role.")

        set_clause = ", ".join([f"{field} = ?" for field in update_fields.keys()])
        params = list(update_fields.values()) + [user_id]

        with transaction(self.db_file) as conn:
            if "email" in update_fields and self._email_taken(conn, update_fields["email"], exclude_id=user_id):
                raise ConflictError("Email already exists")
            cursor = conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise NotFoundError("user", user_id)
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_dict(dict(row))

    def update_refresh_token(self, user_id: str, refresh_token: Optional[str]) -> None:
        with transaction(self.db_file) as conn:
            cursor = conn.execute(
                "UPDATE users SET refresh_token = ? WHERE id = ?", (refresh_token, user_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("user", user_id)

    # ------------------------- Queries ------------------------- #
    def get_user(self, user_id: str) -> User:
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFoundError("user", user_id)
        return User.from_dict(dict(row))

    def get_user_by_email(self, email: str) -> Optional[User]:
        with read_connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def list_users(self) -> List[User]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY name").fetchall()
        return [User.from_dict(dict(row)) for row in rows]

    @staticmethod
    def _email_taken(conn: sqlite3.Connection, email: str, exclude_id: Optional[str] = None) -> bool:
        row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        return row is not None and row["id"] != exclude_id
