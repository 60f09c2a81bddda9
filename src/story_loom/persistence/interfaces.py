from __future__ import annotations

from typing import Protocol


class SessionSnapshotRepo(Protocol):
    def get(self, session_key: str): ...
    def upsert(self, session_key: str, payload_json: str, format_version: int): ...
    def delete(self, session_key: str) -> int: ...


class UnitOfWork(Protocol):
    snapshots: SessionSnapshotRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
