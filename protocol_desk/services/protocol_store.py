"""
Protocol Store: owns the protocol record set and every mutation to it.

Lifecycle rules enforced here (never in blueprints):
    - create / update_status / update_approval / edit / delete require a
      non-blank acting user (IdentityRequiredError otherwise).
    - Every mutation appends exactly the audit entries it describes and
      refreshes ``updated_at`` (clamped so it never moves backwards).
    - Dual approval: once budget approval is APPROVED and customer
      confirmation is CONFIRMED, a protocol not already at
      APPROVED_FOR_PRODUCTION is forced there (from any stage, DELIVERED
      included) and one DUAL_APPROVAL entry is appended.  A protocol already
      at APPROVED_FOR_PRODUCTION is left alone, so repeated writes never
      duplicate the entry.

Consistency boundary:
    Each mutation re-reads the full set from the backend, applies the change
    to that fresh copy and writes the full set back (read-modify-write).
    Another process writing between our read and our write is overwritten:
    last write wins.  Within one process a lock serialises mutations.

The in-memory snapshot served by ``list`` / ``get`` is replaced only after
the backend accepted the write; a PersistenceError leaves it untouched.
"""

from __future__ import annotations

import copy
import logging
import random
import threading
import uuid
from collections.abc import Callable
from datetime import datetime

from flask import current_app

from protocol_desk.core.exceptions import (
    ConflictError,
    IdentityRequiredError,
    NotFoundError,
    ValidationError,
)
from protocol_desk.models.protocol import (
    UNASSIGNED,
    Attachment,
    AuditAction,
    AuditEntry,
    BudgetApproval,
    CustomerConfirmation,
    ProcessStatus,
    Protocol,
    utcnow,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("customer_email", "subject", "responsible", "details")

# field name -> (value enum, audit action, human label, record attribute prefix)
APPROVAL_FIELDS = {
    "budget": (BudgetApproval, AuditAction.BUDGET_APPROVAL, "Budget approval", "budget_approval"),
    "customer": (
        CustomerConfirmation,
        AuditAction.CUSTOMER_CONFIRMATION,
        "Customer confirmation",
        "customer_confirmation",
    ),
}

DUAL_APPROVAL_DETAILS = "Dual approval confirmed - production released"
CODE_SUFFIX_RANGE = range(1000, 10000)


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_actor(actor: str | None) -> str:
    actor = (actor or "").strip()
    if not actor:
        raise IdentityRequiredError()
    return actor


def _coerce(enum_cls, value, field: str):
    """Turn a raw string into ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value or "").strip().upper())
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {valid}",
            details={field: "invalid"},
        ) from None


def _index_of(records: list[Protocol], protocol_id: str) -> int:
    for idx, record in enumerate(records):
        if record.id == protocol_id:
            return idx
    raise NotFoundError(resource="Protocol", resource_id=protocol_id)


# ── Store ──────────────────────────────────────────────────────────────────────


class ProtocolStore:
    """Authoritative protocol record set backed by a persistence backend.

    Args:
        backend: object with ``load_all()`` / ``save_all(records)``.
        clock:   returns an aware UTC datetime; defaults to ``utcnow``.
        rng:     random source for protocol-code suffixes.
    """

    def __init__(self, backend, *, clock: Callable[[], datetime] | None = None,
                 rng: random.Random | None = None):
        self.backend = backend
        self._clock = clock or utcnow
        self._rng = rng or random.SystemRandom()
        self._lock = threading.RLock()
        self._records: list[Protocol] = []
        self._loaded = False

    # ── Reads ────────────────────────────────────────────────────────────────

    def reload(self) -> list[Protocol]:
        """Re-read the full set from the backend into the snapshot."""
        with self._lock:
            self._records = self.backend.load_all()
            self._loaded = True
            return list(self._records)

    def _snapshot(self) -> list[Protocol]:
        if not self._loaded:
            return self.reload()
        return list(self._records)

    def get(self, protocol_id: str) -> Protocol:
        records = self._snapshot()
        return records[_index_of(records, protocol_id)]

    def list(self, status: str | ProcessStatus | None = None,
             search_text: str | None = None) -> list[Protocol]:
        """Filtered view of the snapshot, newest first.

        ``status`` None, "" or "all" disables the status filter.
        ``search_text`` matches code, customer email or subject, case-insensitively.
        """
        records = self._snapshot()
        if status and str(status).lower() != "all":
            wanted = _coerce(ProcessStatus, status, "status")
            records = [r for r in records if r.status == wanted]
        term = (search_text or "").strip()
        if term:
            records = [r for r in records if r.matches(term)]
        return records

    @staticmethod
    def stats(protocols: list[Protocol]) -> dict:
        by_status = {s.value: 0 for s in ProcessStatus}
        for p in protocols:
            by_status[p.status.value] += 1
        return {
            "total": len(protocols),
            "by_status": by_status,
            "pending_budget_approvals": sum(
                1 for p in protocols if p.budget_approval == BudgetApproval.PENDING
            ),
            "pending_customer_confirmations": sum(
                1 for p in protocols if p.customer_confirmation == CustomerConfirmation.PENDING
            ),
        }

    # ── Mutations ────────────────────────────────────────────────────────────

    def create(self, data: dict, actor: str | None,
               attachments: list[Attachment] | None = None) -> Protocol:
        """Create a protocol from ``customer_email``, ``subject`` and optional
        ``details`` / ``responsible``; staged attachments are copied in."""
        actor = _require_actor(actor)
        email = str(data.get("customer_email") or "").strip()
        subject = str(data.get("subject") or "").strip()
        missing = {f: "required" for f, v in (("customer_email", email), ("subject", subject)) if not v}
        if missing:
            raise ValidationError("customer_email and subject are required", details=missing)

        with self._lock:
            records = self.backend.load_all()
            now = self._clock()
            protocol = Protocol(
                id=self._new_id(records),
                protocol_code=self._new_code(records, now),
                customer_email=email,
                subject=subject,
                details=str(data.get("details") or ""),
                responsible=str(data.get("responsible") or "").strip() or UNASSIGNED,
                created_by=actor,
                created_at=now,
                updated_at=now,
                attachments=[copy.deepcopy(a) for a in attachments or []],
                audit_log=[AuditEntry(now, actor, AuditAction.CREATE, "Protocol created")],
            )
            records.insert(0, protocol)
            self._commit(records)

        logger.info(
            "Protocol created",
            extra={"protocol_id": protocol.id, "protocol_code": protocol.protocol_code,
                   "actor": actor, "action": AuditAction.CREATE.value},
        )
        return protocol

    def update_status(self, protocol_id: str, new_status, actor: str | None) -> Protocol:
        actor = _require_actor(actor)
        new_status = _coerce(ProcessStatus, new_status, "status")

        def apply(record: Protocol, now: datetime) -> None:
            old = record.status
            record.status = new_status
            record.audit_log.append(AuditEntry(
                now, actor, AuditAction.STATUS_CHANGE,
                f'Status changed from "{old.label}" to "{new_status.label}"',
            ))

        return self._mutate(protocol_id, actor, AuditAction.STATUS_CHANGE, apply)

    def update_approval(self, protocol_id: str, field: str, value, actor: str | None) -> Protocol:
        """Set budget approval or customer confirmation, then apply dual approval."""
        actor = _require_actor(actor)
        if field not in APPROVAL_FIELDS:
            raise ValidationError(
                f"Invalid approval field '{field}'. Must be one of: budget, customer",
                details={"field": "invalid"},
            )
        enum_cls, action, label, attr = APPROVAL_FIELDS[field]
        value = _coerce(enum_cls, value, "value")

        def apply(record: Protocol, now: datetime) -> None:
            setattr(record, attr, value)
            setattr(record, f"{attr}_by", actor)
            setattr(record, f"{attr}_at", now)
            record.audit_log.append(AuditEntry(now, actor, action, f"{label}: {value.value}"))

            if record.dual_approved and record.status != ProcessStatus.APPROVED_FOR_PRODUCTION:
                record.status = ProcessStatus.APPROVED_FOR_PRODUCTION
                record.audit_log.append(AuditEntry(
                    now, actor, AuditAction.DUAL_APPROVAL, DUAL_APPROVAL_DETAILS,
                ))
                logger.info(
                    "Dual approval released production",
                    extra={"protocol_id": record.id, "protocol_code": record.protocol_code,
                           "actor": actor, "action": AuditAction.DUAL_APPROVAL.value},
                )

        return self._mutate(protocol_id, actor, action, apply)

    def edit(self, protocol_id: str, patch: dict, actor: str | None,
             attachments: list[Attachment] | None = None) -> Protocol:
        """Apply the provided editable fields and append new attachments.

        Keys absent from ``patch`` are left unchanged.  One EDIT entry
        summarises what changed.
        """
        actor = _require_actor(actor)
        updates = {k: str(patch[k] if patch[k] is not None else "") for k in EDITABLE_FIELDS if k in patch}
        for required in ("customer_email", "subject"):
            if required in updates:
                updates[required] = updates[required].strip()
                if not updates[required]:
                    raise ValidationError(f"{required} cannot be blank", details={required: "required"})
        if "responsible" in updates:
            updates["responsible"] = updates["responsible"].strip() or UNASSIGNED

        def apply(record: Protocol, now: datetime) -> None:
            changes = []
            if "customer_email" in updates and updates["customer_email"] != record.customer_email:
                changes.append(f"Email: {record.customer_email} -> {updates['customer_email']}")
            if "subject" in updates and updates["subject"] != record.subject:
                changes.append("Subject changed")
            if "responsible" in updates and updates["responsible"] != record.responsible:
                changes.append(f"Responsible: {record.responsible} -> {updates['responsible']}")
            if "details" in updates and updates["details"] != record.details:
                changes.append("Details changed")

            for key, val in updates.items():
                setattr(record, key, val)
            record.attachments.extend(copy.deepcopy(a) for a in attachments or [])
            record.audit_log.append(AuditEntry(
                now, actor, AuditAction.EDIT, f"Fields edited: {', '.join(changes) or 'none'}",
            ))

        return self._mutate(protocol_id, actor, AuditAction.EDIT, apply)

    def delete(self, protocol_id: str, actor: str | None) -> Protocol:
        """Permanently remove a protocol with its attachments and audit trail.

        The caller must have obtained explicit confirmation beforehand.
        Returns the removed record.
        """
        actor = _require_actor(actor)
        with self._lock:
            records = self.backend.load_all()
            removed = records.pop(_index_of(records, protocol_id))
            self._commit(records)

        logger.info(
            "Protocol deleted",
            extra={"protocol_id": removed.id, "protocol_code": removed.protocol_code,
                   "actor": actor, "action": "DELETE"},
        )
        return removed

    # ── Internals ────────────────────────────────────────────────────────────

    def _mutate(self, protocol_id: str, actor: str, action: AuditAction,
                apply: Callable[[Protocol, datetime], None]) -> Protocol:
        with self._lock:
            records = self.backend.load_all()
            record = records[_index_of(records, protocol_id)]
            now = self._clock()
            if now < record.updated_at:
                now = record.updated_at
            apply(record, now)
            record.updated_at = now
            self._commit(records)

        logger.info(
            "Protocol updated",
            extra={"protocol_id": record.id, "protocol_code": record.protocol_code,
                   "actor": actor, "action": action.value},
        )
        return record

    def _commit(self, records: list[Protocol]) -> None:
        self.backend.save_all(records)
        self._records = records
        self._loaded = True

    @staticmethod
    def _new_id(records: list[Protocol]) -> str:
        existing = {r.id for r in records}
        while True:
            candidate = uuid.uuid4().hex
            if candidate not in existing:
                return candidate

    def _new_code(self, records: list[Protocol], now: datetime) -> str:
        """``PT{YYYYMMDD}-{NNNN}`` with a suffix unused on that date."""
        prefix = f"PT{now:%Y%m%d}-"
        used = {r.protocol_code[len(prefix):] for r in records if r.protocol_code.startswith(prefix)}
        free = [n for n in CODE_SUFFIX_RANGE if str(n) not in used]
        if not free:
            raise ConflictError(resource="Protocol", field="protocol_code", value=f"{prefix}*")
        return f"{prefix}{self._rng.choice(free)}"


# ── Flask wiring ───────────────────────────────────────────────────────────────


def init_protocol_store(app, backend=None) -> ProtocolStore:
    """Attach a ProtocolStore to ``app.extensions["protocol_store"]``."""
    from protocol_desk.services.persistence import build_backend

    store = ProtocolStore(backend or build_backend(app.config))
    app.extensions["protocol_store"] = store
    app.logger.info("Protocol store ready (backend=%s)", getattr(store.backend, "kind", "custom"))
    return store


def get_store() -> ProtocolStore:
    return current_app.extensions["protocol_store"]
