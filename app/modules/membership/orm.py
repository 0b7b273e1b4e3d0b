"""SQLAlchemy schemas for the local membership cache."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from modules.membership.domain import models


class BaseORM(DeclarativeBase):
    """Base class for all ORM classes."""


class LocalMemberORM(BaseORM):
    """A remote user cached locally."""

    __tablename__ = "local_members"

    user_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False
    )
    username: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), default=None)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    project_name: Mapped[Optional[str]] = mapped_column(String(512), default=None)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def dump(self) -> models.LocalMember:
        """Create a domain model from the ORM object."""
        return models.LocalMember(
            user_id=self.user_id,
            username=self.username,
            name=self.name,
            avatar_url=self.avatar_url,
            project_id=self.project_id,
            project_name=self.project_name,
            updated_at=self.updated_at,
        )


class LocalGroupORM(BaseORM):
    """A user-defined named set of cached members."""

    __tablename__ = "local_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def dump(self, members_count: int = 0) -> models.LocalGroup:
        return models.LocalGroup(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            members_count=members_count,
        )


class LocalGroupMemberORM(BaseORM):
    """Membership row linking a local group and a cached member."""

    __tablename__ = "local_group_members"

    group_id: Mapped[int] = mapped_column(
        ForeignKey("local_groups.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("local_members.user_id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
