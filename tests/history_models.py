"""
Versioned models shared by the test-suite.

Importing this module registers every class with @versioned and puts the live
and history tables on ``Base.metadata``. Live tables use SQLite AUTOINCREMENT
so the id of a destroyed record is never handed out again.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import Boolean, Float, Integer, String, Text, func, select
from sqlalchemy.orm import Mapped, mapped_column, object_session

from recordhistory import HistoryValidationError, Versioned, versioned
from recordhistory.db.base import Base, TimestampMixin


# ---------------------------------------------------------------------------
# Plain record with a uniqueness rule
# ---------------------------------------------------------------------------

@versioned
class Rolle(Versioned, Base):
    __tablename__ = "rollen"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def validate(self) -> None:
        if not self.name:
            raise HistoryValidationError(
                "name is required",
                record_type="Rolle",
                validation_errors=[{"field": "name", "error": "blank"}],
            )
        session = object_session(self)
        query = select(func.count()).select_from(Rolle).where(Rolle.name == self.name)
        if self.id is not None:
            query = query.where(Rolle.id != self.id)
        if session.execute(query).scalar():
            raise HistoryValidationError(
                f"name '{self.name}' is already taken",
                record_type="Rolle",
                record_id=self.id,
                validation_errors=[{"field": "name", "error": "taken"}],
            )


# ---------------------------------------------------------------------------
# Optimistic locking
# ---------------------------------------------------------------------------

@versioned
class LockedRolle(Versioned, Base):
    __tablename__ = "locked_rollen"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Column exclusion, change policies, conditions
# ---------------------------------------------------------------------------

@versioned(non_versioned_columns="foo")
class Widget(Versioned, Base):
    __tablename__ = "widgets"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    foo: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)


@versioned(if_changed=["name", "latitude"])
class Landmark(Versioned, Base):
    __tablename__ = "landmarks"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(80))
    latitude: Mapped[float] = mapped_column(Float, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, default=0.0)
    doesnt_trigger_version: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)


@versioned(condition="publishable")
class Page(Versioned, Base):
    __tablename__ = "pages"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(120))
    draft: Mapped[bool] = mapped_column(Boolean, default=False)

    def publishable(self) -> bool:
        return not self.draft


@versioned(condition=lambda record: record.score >= 0)
class Score(Versioned, Base):
    __tablename__ = "scores"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    score: Mapped[int] = mapped_column(Integer, default=0)


# ---------------------------------------------------------------------------
# Retention and timestamps (options from an inner block)
# ---------------------------------------------------------------------------

@versioned
class Note(Versioned, TimestampMixin, Base):
    __tablename__ = "notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    body: Mapped[str] = mapped_column(Text)

    class Versioning:
        limit = 2


# ---------------------------------------------------------------------------
# Single-table inheritance
# ---------------------------------------------------------------------------

@versioned
class Vehicle(Versioned, Base):
    __tablename__ = "vehicles"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[str] = mapped_column(String(20))
    name: Mapped[str] = mapped_column(String(50))
    wheels: Mapped[int] = mapped_column(Integer, default=4)

    __mapper_args__ = {"polymorphic_on": "kind", "polymorphic_identity": "vehicle"}


class Car(Vehicle):
    __mapper_args__ = {"polymorphic_identity": "car"}


class Truck(Vehicle):
    __mapper_args__ = {"polymorphic_identity": "truck"}


# ---------------------------------------------------------------------------
# Custom names, pydantic validation and an extension mixin
# ---------------------------------------------------------------------------

class TagSchema(BaseModel):
    label: str = Field(min_length=2, max_length=30)


@versioned
class Tag(Versioned, Base):
    __tablename__ = "tags"
    __table_args__ = {"sqlite_autoincrement": True}
    __validator__ = TagSchema

    id: Mapped[int] = mapped_column(primary_key=True)
    label: Mapped[str] = mapped_column(String(30))


class RevisionHelpers:
    def summary(self) -> str:
        return f"{self.title} (r{self.version})"


@versioned(table_name="document_revisions", foreign_key="document_id", extend=RevisionHelpers)
class Document(Versioned, Base):
    __tablename__ = "documents"
    __table_args__ = {"sqlite_autoincrement": True}
    __version_column__ = "revision"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(120))
