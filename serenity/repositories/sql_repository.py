"""High-level data access helpers backed by SQLAlchemy."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from serenity.core.errors import ConflictError
from serenity.db.models import Record, SessionRecord, User
from serenity.db.session import Database


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SQLRepository:
    """CRUD helpers wrapping the SQLAlchemy session."""

    def __init__(self, database: Database) -> None:
        self.database = database

    # -------------------------- users --------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        with self.database.session() as session:
            return session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.database.session() as session:
            stmt = select(User).where(User.email == email.strip().lower())
            return session.execute(stmt).scalar_one_or_none()

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        full_name: str | None = None,
        role: str = "user",
    ) -> User:
        now = _now()
        user = User(
            email=email.strip().lower(),
            password_hash=password_hash,
            full_name=full_name,
            role=role,
            created_at=now,
            updated_at=now,
        )
        with self.database.session() as session:
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"An account already exists for {user.email}") from exc
            session.refresh(user)
            return user

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        with self.database.session() as session:
            user = session.get(User, user_id)
            if user is None:
                return
            user.password_hash = password_hash
            user.updated_at = _now()
            session.commit()

    def list_users(self, *, limit: int = 50, offset: int = 0) -> tuple[list[User], int]:
        with self.database.session() as session:
            total = session.execute(select(func.count()).select_from(User)).scalar_one()
            stmt = select(User).order_by(User.created_at, User.email).limit(limit).offset(offset)
            return list(session.execute(stmt).scalars()), total

    # -------------------------- sessions --------------------------
    def load_session(self, sid: str) -> Optional[dict[str, Any]]:
        now = _now()
        with self.database.session() as session:
            entity = session.get(SessionRecord, sid)
            if not entity:
                return None
            if _aware(entity.expires_at) <= now:
                session.delete(entity)
                session.commit()
                return None
            return dict(entity.data or {})

    def save_session(self, sid: str, data: dict[str, Any], expires_at: datetime) -> None:
        now = _now()
        with self.database.session() as session:
            entity = session.get(SessionRecord, sid)
            if entity is None:
                session.add(SessionRecord(sid=sid, data=data, expires_at=expires_at, created_at=now, updated_at=now))
            else:
                entity.data = data
                entity.expires_at = expires_at
                entity.updated_at = now
            session.commit()

    def delete_session(self, sid: str) -> None:
        with self.database.session() as session:
            session.execute(delete(SessionRecord).where(SessionRecord.sid == sid))
            session.commit()

    def purge_expired_sessions(self) -> int:
        with self.database.session() as session:
            result = session.execute(delete(SessionRecord).where(SessionRecord.expires_at <= _now()))
            session.commit()
            return result.rowcount or 0

    # -------------------------- records --------------------------
    def list_records(self, kind: str, *, limit: int = 20, offset: int = 0) -> tuple[list[Record], int]:
        with self.database.session() as session:
            total = session.execute(
                select(func.count()).select_from(Record).where(Record.kind == kind)
            ).scalar_one()
            stmt = (
                select(Record)
                .where(Record.kind == kind)
                .order_by(Record.created_at.desc(), Record.id)
                .limit(limit)
                .offset(offset)
            )
            return list(session.execute(stmt).scalars()), total

    def get_record(self, kind: str, record_id: str) -> Optional[Record]:
        with self.database.session() as session:
            record = session.get(Record, record_id)
            if record is None or record.kind != kind:
                return None
            return record

    def create_record(self, kind: str, data: dict[str, Any], *, created_by: str | None = None) -> Record:
        now = _now()
        record = Record(kind=kind, data=data, created_by=created_by, created_at=now, updated_at=now)
        with self.database.session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def update_record(self, kind: str, record_id: str, changes: dict[str, Any]) -> Optional[Record]:
        with self.database.session() as session:
            record = session.get(Record, record_id)
            if record is None or record.kind != kind:
                return None
            record.data = {**(record.data or {}), **changes}
            record.updated_at = _now()
            session.commit()
            session.refresh(record)
            return record

    def delete_record(self, kind: str, record_id: str) -> bool:
        with self.database.session() as session:
            result = session.execute(delete(Record).where(Record.id == record_id, Record.kind == kind))
            session.commit()
            return bool(result.rowcount)
