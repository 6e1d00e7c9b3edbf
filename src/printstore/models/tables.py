"""
Relational schema for fingerprint storage.

Every table is scoped by ``instance_id`` so several reporting instances can
share one physical table set. Usage and facet rows reference their
fingerprint through a composite foreign key with ``ON DELETE CASCADE``, so
deleting a fingerprint row removes everything attached to it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKeyConstraint, Text
from sqlmodel import Field, SQLModel


class FingerprintRecord(SQLModel, table=True):
    """
    One fingerprint per (hash, instance).

    Attributes:
        fingerprint_id (str): Hash string of the tracked file.
        instance_id (str): Identity of the reporting instance that owns the row.
        timestamp (datetime): When the fingerprint was first recorded.
        filename (str): Name of the tracked file.
        original_job_name (Optional[str]): Job of the producing build, or NULL.
        original_job_build_number (Optional[int]): Number of the producing build, or NULL.
    """

    __tablename__ = "fingerprint"

    fingerprint_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    instance_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    filename: str
    original_job_name: Optional[str] = Field(default=None, nullable=True)
    original_job_build_number: Optional[int] = Field(default=None, nullable=True)


class FingerprintJobBuildRelation(SQLModel, table=True):
    """One row per build number that used a fingerprint."""

    __tablename__ = "fingerprint_job_build_relation"
    __table_args__ = (
        ForeignKeyConstraint(
            ["fingerprint_id", "instance_id"],
            ["fingerprint.fingerprint_id", "fingerprint.instance_id"],
            ondelete="CASCADE",
        ),
    )

    fingerprint_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    instance_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    job: str = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    build_number: int = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )


class FingerprintFacetRelation(SQLModel, table=True):
    """
    One row per facet type attached to a fingerprint.

    ``facet_entry`` holds the facet payload as JSON text, without the type
    name wrapper, so it stays readable with the database's JSON functions.
    """

    __tablename__ = "fingerprint_facet_relation"
    __table_args__ = (
        ForeignKeyConstraint(
            ["fingerprint_id", "instance_id"],
            ["fingerprint.fingerprint_id", "fingerprint.instance_id"],
            ondelete="CASCADE",
        ),
    )

    fingerprint_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    instance_id: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    facet_name: str = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    facet_entry: str = Field(sa_column=Column(Text, nullable=False))
    is_deletion_blocked: bool = Field(default=False)


FINGERPRINT_TABLES = [
    FingerprintRecord.__table__,
    FingerprintJobBuildRelation.__table__,
    FingerprintFacetRelation.__table__,
]
