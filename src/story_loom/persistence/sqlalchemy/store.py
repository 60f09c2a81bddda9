from __future__ import annotations

from typing import Callable

from ..interfaces import UnitOfWork


class SQLAlchemySnapshotStore:
    """``SnapshotStorePort`` backed by one row per session key."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def read(self, session_key: str) -> str | None:
        with self._uow_factory() as uow:
            row = uow.snapshots.get(session_key)
            return row.payload_json if row is not None else None

    def write(self, session_key: str, payload: str, format_version: int) -> None:
        with self._uow_factory() as uow:
            uow.snapshots.upsert(session_key, payload, format_version)
            uow.commit()

    def delete(self, session_key: str) -> bool:
        with self._uow_factory() as uow:
            removed = uow.snapshots.delete(session_key)
            uow.commit()
            return removed > 0
