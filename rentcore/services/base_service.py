"""Shared service base with robust session lifecycle behavior."""

from __future__ import annotations

from sqlalchemy.orm import Session

from rentcore.database.db import get_session_factory


class BaseService:
    """Base class for services that operate on a SQLAlchemy session.

    Lifecycle collaborators (contracts, invoices, payments) only flush: the job
    handler that called them owns the transaction. Services driven directly by
    a human action (handover recording) commit through :meth:`commit`.
    """

    def __init__(self, db: Session | None = None) -> None:
        self.db = db or get_session_factory()()

    def commit(self) -> None:
        """Commit current transaction and rollback on failure."""
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "BaseService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        self.close()
