"""Local membership store.

SQLite-backed cache of previously seen members and user-defined groups. It is
the single source of truth for which user ids belong to a local group, and
the only place batch targets are resolved from when a group is selected.

Semantics:
  - upsert() inserts or updates by user_id, last write wins.
  - add_to_group()/remove_from_group() are set union/difference; repeating
    them is a no-op.
  - delete_group() removes membership rows but never cached members.
  - delete_members() removes members from every group.

Every database failure is re-raised as StoreError.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, delete, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.logging import get_module_logger
from modules.membership.domain.errors import GroupNotFoundError, StoreError
from modules.membership.domain.models import LocalGroup, LocalMember, Page
from modules.membership.orm import (
    BaseORM,
    LocalGroupMemberORM,
    LocalGroupORM,
    LocalMemberORM,
)

logger = get_module_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique(user_ids: Iterable[int]) -> List[int]:
    return list(dict.fromkeys(int(u) for u in user_ids))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for the cache database.

    In-memory SQLite databases share one connection across threads, otherwise
    every thread would see its own empty database.
    """
    kwargs: dict = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class LocalMembershipStore:
    """Repository for cached members and local groups.

    Args:
        engine: SQLAlchemy engine; tables are created if missing.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_maker = sessionmaker(bind=engine, expire_on_commit=False)
        try:
            BaseORM.metadata.create_all(engine)
        except SQLAlchemyError as e:
            logger.error("member_store_init_failed", error=str(e))
            raise StoreError(f"failed to initialize member store: {e}") from e
        logger.info("member_store_initialized", url=engine.url.render_as_string())

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "LocalMembershipStore":
        return cls(create_store_engine(url, echo=echo))

    @classmethod
    def from_settings(cls, store_settings) -> "LocalMembershipStore":
        return cls.from_url(store_settings.URL, echo=store_settings.ECHO)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_maker.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("member_store_error", error=str(e))
            raise StoreError(str(e)) from e

    def _require_group(self, session: Session, group_id: int) -> LocalGroupORM:
        group = session.get(LocalGroupORM, group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group

    # Members

    def upsert(self, members: Sequence[LocalMember]) -> int:
        """Insert or update members by user_id.

        username, name, avatar and updated_at always take the new values. The
        last-seen project is replaced only when the incoming row carries one.

        Returns:
            Number of rows written.
        """
        now = _utcnow()
        latest = {m.user_id: m for m in members}
        with self._transaction() as session:
            for member in latest.values():
                row = session.get(LocalMemberORM, member.user_id)
                if row is None:
                    session.add(
                        LocalMemberORM(
                            user_id=member.user_id,
                            username=member.username,
                            name=member.name,
                            avatar_url=member.avatar_url,
                            project_id=member.project_id,
                            project_name=member.project_name,
                            updated_at=now,
                        )
                    )
                    continue
                row.username = member.username
                row.name = member.name
                row.avatar_url = member.avatar_url
                if member.project_id is not None or member.project_name:
                    row.project_id = member.project_id
                    row.project_name = member.project_name
                row.updated_at = now
        logger.info("local_members_upserted", count=len(latest))
        return len(latest)

    def list_members(
        self, query: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> Page[LocalMember]:
        """List cached members, most recently updated first.

        Args:
            query: Optional substring matched against username or name.
        """
        page = max(page, 1)
        stmt = select(LocalMemberORM)
        count_stmt = select(func.count()).select_from(LocalMemberORM)
        if query and query.strip():
            like = f"%{query.strip()}%"
            condition = or_(
                LocalMemberORM.username.like(like), LocalMemberORM.name.like(like)
            )
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)
        stmt = (
            stmt.order_by(
                LocalMemberORM.updated_at.desc(), LocalMemberORM.user_id.asc()
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        with self._transaction() as session:
            total = session.scalar(count_stmt) or 0
            rows = session.scalars(stmt).all()
            items = [r.dump() for r in rows]
        return Page(items=items, total=total, page=page, page_size=page_size)

    def get_members(self, user_ids: Iterable[int]) -> List[LocalMember]:
        ids = _unique(user_ids)
        if not ids:
            return []
        with self._transaction() as session:
            rows = session.scalars(
                select(LocalMemberORM).where(LocalMemberORM.user_id.in_(ids))
            ).all()
            by_id = {r.user_id: r.dump() for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    def delete_members(self, user_ids: Iterable[int]) -> int:
        """Delete cached members and their rows in every group."""
        ids = _unique(user_ids)
        if not ids:
            return 0
        with self._transaction() as session:
            session.execute(
                delete(LocalGroupMemberORM).where(LocalGroupMemberORM.user_id.in_(ids))
            )
            deleted = session.execute(
                delete(LocalMemberORM).where(LocalMemberORM.user_id.in_(ids))
            ).rowcount
        logger.info("local_members_deleted", requested=len(ids), deleted=deleted)
        return deleted or 0

    # Groups

    def create_group(self, name: str) -> LocalGroup:
        name = (name or "").strip()
        if not name:
            raise ValueError("group name must not be empty")
        with self._transaction() as session:
            group = LocalGroupORM(name=name, created_at=_utcnow())
            session.add(group)
            session.flush()
            result = group.dump()
        logger.info("local_group_created", group_id=result.id, name=name)
        return result

    def rename_group(self, group_id: int, name: str) -> LocalGroup:
        name = (name or "").strip()
        if not name:
            raise ValueError("group name must not be empty")
        with self._transaction() as session:
            group = self._require_group(session, group_id)
            group.name = name
            count = self._count_members(session, group_id)
            return group.dump(members_count=count)

    def delete_group(self, group_id: int) -> None:
        """Delete a group and its membership rows; cached members are kept."""
        with self._transaction() as session:
            group = self._require_group(session, group_id)
            session.execute(
                delete(LocalGroupMemberORM).where(
                    LocalGroupMemberORM.group_id == group_id
                )
            )
            session.delete(group)
        logger.info("local_group_deleted", group_id=group_id)

    def get_group(self, group_id: int) -> LocalGroup:
        with self._transaction() as session:
            group = self._require_group(session, group_id)
            return group.dump(members_count=self._count_members(session, group_id))

    def list_groups(self) -> List[LocalGroup]:
        """List groups with their member counts, newest first."""
        stmt = (
            select(LocalGroupORM, func.count(LocalGroupMemberORM.user_id))
            .outerjoin(
                LocalGroupMemberORM, LocalGroupMemberORM.group_id == LocalGroupORM.id
            )
            .group_by(LocalGroupORM.id)
            .order_by(LocalGroupORM.id.desc())
        )
        with self._transaction() as session:
            return [group.dump(members_count=count) for group, count in session.execute(stmt)]

    def _count_members(self, session: Session, group_id: int) -> int:
        return (
            session.scalar(
                select(func.count())
                .select_from(LocalGroupMemberORM)
                .where(LocalGroupMemberORM.group_id == group_id)
            )
            or 0
        )

    # Group membership

    def add_to_group(self, group_id: int, user_ids: Iterable[int]) -> int:
        """Add cached members to a group; ids already present are skipped.

        Raises:
            GroupNotFoundError: The group does not exist.
            StoreError: Some ids are not cached members.

        Returns:
            Number of membership rows created.
        """
        ids = _unique(user_ids)
        if not ids:
            return 0
        with self._transaction() as session:
            self._require_group(session, group_id)
            known = set(
                session.scalars(
                    select(LocalMemberORM.user_id).where(
                        LocalMemberORM.user_id.in_(ids)
                    )
                ).all()
            )
            missing = [i for i in ids if i not in known]
            if missing:
                raise StoreError(f"unknown local members: {missing}")
            present = set(
                session.scalars(
                    select(LocalGroupMemberORM.user_id).where(
                        LocalGroupMemberORM.group_id == group_id,
                        LocalGroupMemberORM.user_id.in_(ids),
                    )
                ).all()
            )
            now = _utcnow()
            new_ids = [i for i in ids if i not in present]
            for user_id in new_ids:
                session.add(
                    LocalGroupMemberORM(group_id=group_id, user_id=user_id, created_at=now)
                )
        logger.info(
            "local_group_members_added",
            group_id=group_id,
            requested=len(ids),
            added=len(new_ids),
        )
        return len(new_ids)

    def remove_from_group(self, group_id: int, user_ids: Iterable[int]) -> int:
        """Remove ids from a group; ids not in the group are ignored.

        Returns:
            Number of membership rows deleted.
        """
        ids = _unique(user_ids)
        if not ids:
            return 0
        with self._transaction() as session:
            self._require_group(session, group_id)
            removed = session.execute(
                delete(LocalGroupMemberORM).where(
                    LocalGroupMemberORM.group_id == group_id,
                    LocalGroupMemberORM.user_id.in_(ids),
                )
            ).rowcount
        logger.info(
            "local_group_members_removed",
            group_id=group_id,
            requested=len(ids),
            removed=removed,
        )
        return removed or 0

    def list_group_members(self, group_id: int) -> List[LocalMember]:
        """List the cached members of a group, ordered by username."""
        stmt = (
            select(LocalMemberORM)
            .join(LocalGroupMemberORM, LocalGroupMemberORM.user_id == LocalMemberORM.user_id)
            .where(LocalGroupMemberORM.group_id == group_id)
            .order_by(LocalMemberORM.username.asc(), LocalMemberORM.user_id.asc())
        )
        with self._transaction() as session:
            self._require_group(session, group_id)
            members = [r.dump() for r in session.scalars(stmt).all()]
        logger.debug("local_group_members_listed", group_id=group_id, count=len(members))
        return members

    def close(self) -> None:
        self._engine.dispose()
