from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import SessionSnapshot


class SessionSnapshotRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_key: str) -> SessionSnapshot | None:
        stmt = select(SessionSnapshot).where(SessionSnapshot.session_key == session_key).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert(self, session_key: str, payload_json: str, format_version: int) -> SessionSnapshot:
        now = datetime.utcnow()
        stmt = (
            update(SessionSnapshot)
            .where(SessionSnapshot.session_key == session_key)
            .values(
                payload_json=payload_json,
                format_version=format_version,
                row_version=SessionSnapshot.row_version + 1,
                updated_at=now,
            )
        )
        if (self.session.execute(stmt).rowcount or 0) == 0:
            try:
                with self.session.begin_nested():
                    row = SessionSnapshot(
                        session_key=session_key,
                        payload_json=payload_json,
                        format_version=format_version,
                    )
                    self.session.add(row)
                    self.session.flush()
                    return row
            except IntegrityError as exc:
                message = str(exc).lower()
                if (
                    "uq_sl_session_snapshot_key" not in message
                    and "sl_session_snapshots.session_key" not in message
                ):
                    raise
                # Lost an insert race; the row exists now.
                self.session.execute(stmt)
        row = self.get(session_key)
        assert row is not None
        return row

    def delete(self, session_key: str) -> int:
        stmt = delete(SessionSnapshot).where(SessionSnapshot.session_key == session_key)
        return self.session.execute(stmt).rowcount or 0
