"""
Relational identity store.

Users are the only relational entity: integer ids, unique email, role.
Everything else in the marketplace refers to them by the stringified id.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import DateTime, Integer, String, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from config import IDENTITY_DATABASE_URL, USER_FALLBACK_NAME
from schemas import User

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("role", "name", "password_hash")


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="buyer")
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name or USER_FALLBACK_NAME,
        role=row.role,
        created_at=row.created_at,
    )


def _parse_id(user_id: Union[int, str, None]) -> Optional[int]:
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


class IdentityStore:
    def __init__(self, url: str = IDENTITY_DATABASE_URL):
        self.url = url
        self.engine = None
        self._session = None

    def init(self) -> "IdentityStore":
        if self.engine is not None:
            return self
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self.engine = create_engine(self.url, connect_args=connect_args)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(self.engine, expire_on_commit=False)
        logger.info("Identity store ready: %s", self.engine.url.render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Identity store closed")
        self.engine = None
        self._session = None

    def session(self):
        if self._session is None:
            raise RuntimeError("IdentityStore.init() has not been called")
        return self._session()

    def get_user(self, user_id: Union[int, str, None]) -> Optional[User]:
        pk = _parse_id(user_id)
        if pk is None:
            return None
        with self.session() as session:
            row = session.get(UserRow, pk)
            return _to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.session() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return _to_user(row) if row else None

    def get_users(self, user_ids: Iterable[Union[int, str]]) -> Dict[str, User]:
        """Batch lookup keyed by the stringified id; unknown or non-numeric ids are skipped."""
        pks = {pk for pk in (_parse_id(u) for u in user_ids) if pk is not None}
        if not pks:
            return {}
        with self.session() as session:
            rows = session.scalars(select(UserRow).where(UserRow.id.in_(pks))).all()
            return {str(row.id): _to_user(row) for row in rows}

    def create_user(self, email: str, password_hash: str, name: Optional[str] = None, role: str = "buyer") -> User:
        row = UserRow(
            email=email,
            password_hash=password_hash,
            role=role or "buyer",
            name=name or email.split("@")[0],
            created_at=datetime.now(timezone.utc),
        )
        with self.session() as session:
            session.add(row)
            session.commit()
            logger.info("User %s registered as %s", row.id, row.role)
            return _to_user(row)

    def update_user(self, user_id: Union[int, str], **updates) -> Optional[User]:
        pk = _parse_id(user_id)
        if pk is None:
            return None
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v}
        with self.session() as session:
            row = session.get(UserRow, pk)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            if changes:
                session.commit()
            return _to_user(row)

    def list_users(self) -> List[User]:
        with self.session() as session:
            return [_to_user(row) for row in session.scalars(select(UserRow).order_by(UserRow.id)).all()]

    def count_users(self) -> int:
        with self.session() as session:
            return session.scalar(select(func.count()).select_from(UserRow)) or 0
