"""
Persistence backends for the protocol record set.

Every backend implements the same two-call contract used by ProtocolStore:

    load_all() -> list[Protocol]
        Empty list when nothing is stored or the stored data cannot be
        parsed (logged, never raised).  I/O failures raise PersistenceError.

    save_all(records) -> None
        Full replace of the stored set.  Failures raise PersistenceError.

Backends:
    JsonFileBackend     one JSON array on disk (blob-store variant)
    SqlDocumentBackend  one row per protocol via Flask-SQLAlchemy (document-store variant)
    MemoryBackend       serialised blob held in process (testing config)

No schema version is written; documents are Protocol.to_dict() field for field.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from protocol_desk.core.exceptions import PersistenceError
from protocol_desk.models import db
from protocol_desk.models.document import ProtocolDocument
from protocol_desk.models.protocol import Protocol

logger = logging.getLogger(__name__)

# Errors raised by Protocol.from_dict on a malformed document
_RECORD_ERRORS = (KeyError, ValueError, TypeError, AttributeError)


# ── Serialisation helpers ────────────────────────────────────────────────────


def serialize_records(records: list[Protocol]) -> str:
    """Serialise the full record set to the stored JSON text."""
    return json.dumps([r.to_dict() for r in records], ensure_ascii=False)


def _parse_record(data, backend: str) -> Protocol | None:
    try:
        return Protocol.from_dict(data)
    except _RECORD_ERRORS as exc:
        record_id = data.get("id") if isinstance(data, dict) else None
        logger.warning(
            "Skipping unreadable protocol document id=%s: %s", record_id, exc,
            extra={"backend": backend},
        )
        return None


def parse_records(raw: str | None, backend: str) -> list[Protocol]:
    """Parse stored JSON text; unreadable input yields an empty list."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Stored protocol set is not valid JSON: %s", exc, extra={"backend": backend})
        return []
    if not isinstance(parsed, list):
        logger.warning("Stored protocol set is not a JSON array", extra={"backend": backend})
        return []
    records = []
    for item in parsed:
        record = _parse_record(item, backend)
        if record is not None:
            records.append(record)
    return records


# ── Backends ─────────────────────────────────────────────────────────────────


class MemoryBackend:
    """Holds the serialised set in process memory.

    Stores the same JSON text the file backend would write, so round-trip
    behaviour matches production backends.
    """

    kind = "memory"

    def __init__(self, raw: str | None = None):
        self._raw = raw

    @property
    def raw(self) -> str | None:
        return self._raw

    def load_all(self) -> list[Protocol]:
        return parse_records(self._raw, self.kind)

    def save_all(self, records: list[Protocol]) -> None:
        self._raw = serialize_records(records)

    def clear(self) -> None:
        self._raw = None


class JsonFileBackend:
    """One JSON array in a file; writes go through a temp file + os.replace."""

    kind = "json"

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def load_all(self) -> list[Protocol]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except UnicodeDecodeError as exc:
            logger.warning("Stored protocol set is not valid UTF-8: %s", exc, extra={"backend": self.kind})
            return []
        except OSError as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}", backend=self.kind) from exc
        return parse_records(raw, self.kind)

    def save_all(self, records: list[Protocol]) -> None:
        payload = serialize_records(records)
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".protocols-", suffix=".json",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Could not write {self.path}: {exc}", backend=self.kind) from exc


class SqlDocumentBackend:
    """One ProtocolDocument row per protocol.

    Must be used inside a Flask app context.  ``save_all`` replaces every row
    in a single transaction, so a failed write leaves the previous set intact.
    """

    kind = "sql"

    def load_all(self) -> list[Protocol]:
        try:
            rows = db.session.execute(
                select(ProtocolDocument).order_by(ProtocolDocument.position)
            ).scalars().all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not read protocol documents: {exc}", backend=self.kind) from exc

        records = []
        for row in rows:
            try:
                data = json.loads(row.body or "{}")
            except json.JSONDecodeError as exc:
                logger.warning("Skipping protocol document id=%s: %s", row.id, exc,
                               extra={"backend": self.kind})
                continue
            record = _parse_record(data, self.kind)
            if record is not None:
                records.append(record)
        return records

    def save_all(self, records: list[Protocol]) -> None:
        try:
            db.session.execute(delete(ProtocolDocument))
            for position, record in enumerate(records):
                db.session.add(ProtocolDocument(
                    id=record.id,
                    position=position,
                    body=json.dumps(record.to_dict(), ensure_ascii=False),
                ))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Protocol document write failed")
            raise PersistenceError(f"Could not write protocol documents: {exc}", backend=self.kind) from exc


def build_backend(config) -> MemoryBackend | JsonFileBackend | SqlDocumentBackend:
    """Create the backend named by ``PROTOCOL_BACKEND`` in a Flask config mapping."""
    kind = (config.get("PROTOCOL_BACKEND") or "json").lower()
    if kind == "json":
        return JsonFileBackend(config["PROTOCOL_STORE_PATH"])
    if kind == "sql":
        return SqlDocumentBackend()
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown PROTOCOL_BACKEND '{kind}'. Must be one of: json, sql, memory")
