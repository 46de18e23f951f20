"""
Protocol Desk
Protocol domain model.

Models:
    - Protocol:   a customer quote/order record moving through a 4-stage workflow.
    - Attachment: a file owned by exactly one protocol.
    - AuditEntry: an immutable, attributed record of one mutation.

These are plain dataclasses, not ORM rows: the whole record set is persisted
as one ordered sequence of JSON documents (see services/persistence.py).
``to_dict`` / ``from_dict`` are field-for-field and round-trip stable.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# ── Constants ────────────────────────────────────────────────────────────────

UNASSIGNED = "Unassigned"
DEFAULT_MIME_TYPE = "application/octet-stream"

# PT20250131-4821 (current) or 20250131-482 (legacy records)
PROTOCOL_CODE_RE = re.compile(r"^(?:PT\d{8}-\d{4}|\d{8}-\d{3})$")


# ── Enums ────────────────────────────────────────────────────────────────────


class ProcessStatus(str, Enum):
    REQUESTED = "REQUESTED"
    SENT = "SENT"
    APPROVED_FOR_PRODUCTION = "APPROVED_FOR_PRODUCTION"
    DELIVERED = "DELIVERED"

    @property
    def stage(self) -> int:
        """1-based position in the workflow."""
        return _STAGE_ORDER.index(self) + 1

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


_STAGE_ORDER = [
    ProcessStatus.REQUESTED,
    ProcessStatus.SENT,
    ProcessStatus.APPROVED_FOR_PRODUCTION,
    ProcessStatus.DELIVERED,
]

STATUS_LABELS = {
    ProcessStatus.REQUESTED: "1. Quote requested",
    ProcessStatus.SENT: "2. Quote sent",
    ProcessStatus.APPROVED_FOR_PRODUCTION: "3. Quote approved - start production",
    ProcessStatus.DELIVERED: "4. Delivered to customer",
}


class BudgetApproval(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"


class CustomerConfirmation(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    BUDGET_APPROVAL = "BUDGET_APPROVAL"
    CUSTOMER_CONFIRMATION = "CUSTOMER_CONFIRMATION"
    EDIT = "EDIT"
    DUAL_APPROVAL = "DUAL_APPROVAL"


# ── Timestamp helpers ────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _load_ts(value) -> datetime | None:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Records ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEntry:
    """One immutable line of a protocol's audit trail."""

    timestamp: datetime
    user: str
    action: AuditAction
    details: str

    def to_dict(self) -> dict:
        return {
            "timestamp": _dump_ts(self.timestamp),
            "user": self.user,
            "action": self.action.value,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> AuditEntry:
        return cls(
            timestamp=_load_ts(data["timestamp"]),
            user=data.get("user") or "system",
            action=AuditAction(data["action"]),
            details=data.get("details") or "",
        )


@dataclass
class Attachment:
    """A file attached to a protocol.

    Bytes are kept inline as base64 (``content_b64``); records imported from a
    document store may carry only a ``url`` reference instead.
    """

    id: str
    filename: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE
    content_b64: str | None = None
    url: str | None = None
    uploaded_by: str = ""
    uploaded_at: datetime | None = None

    @property
    def content(self) -> bytes | None:
        if self.content_b64 is None:
            return None
        return base64.b64decode(self.content_b64)

    def to_dict(self, include_content: bool = True) -> dict:
        data = {
            "id": self.id,
            "filename": self.filename,
            "size": self.size,
            "mime_type": self.mime_type,
            "url": self.url,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _dump_ts(self.uploaded_at),
        }
        if include_content:
            data["content_b64"] = self.content_b64
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Attachment:
        return cls(
            id=str(data["id"]),
            filename=data.get("filename") or "attachment",
            size=int(data.get("size") or 0),
            mime_type=data.get("mime_type") or DEFAULT_MIME_TYPE,
            content_b64=data.get("content_b64"),
            url=data.get("url"),
            uploaded_by=data.get("uploaded_by") or "",
            uploaded_at=_load_ts(data.get("uploaded_at")),
        )


@dataclass
class Protocol:
    """A tracked customer quote/order record.

    Approval fields carry a fixed (actor, timestamp) pair each; the
    dual-approval rule lives in ProtocolStore, not here.
    """

    id: str
    protocol_code: str
    customer_email: str
    subject: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    details: str = ""
    responsible: str = UNASSIGNED
    status: ProcessStatus = ProcessStatus.REQUESTED
    budget_approval: BudgetApproval = BudgetApproval.PENDING
    budget_approval_by: str | None = None
    budget_approval_at: datetime | None = None
    customer_confirmation: CustomerConfirmation = CustomerConfirmation.PENDING
    customer_confirmation_by: str | None = None
    customer_confirmation_at: datetime | None = None
    attachments: list[Attachment] = field(default_factory=list)
    audit_log: list[AuditEntry] = field(default_factory=list)

    @property
    def dual_approved(self) -> bool:
        return (
            self.budget_approval == BudgetApproval.APPROVED
            and self.customer_confirmation == CustomerConfirmation.CONFIRMED
        )

    def matches(self, search_text: str) -> bool:
        """Case-insensitive substring match on code, email or subject."""
        term = search_text.lower()
        return any(
            term in (value or "").lower()
            for value in (self.protocol_code, self.customer_email, self.subject)
        )

    def to_dict(self, include_content: bool = True) -> dict:
        return {
            "id": self.id,
            "protocol_code": self.protocol_code,
            "customer_email": self.customer_email,
            "subject": self.subject,
            "details": self.details,
            "responsible": self.responsible,
            "created_by": self.created_by,
            "status": self.status.value,
            "budget_approval": self.budget_approval.value,
            "budget_approval_by": self.budget_approval_by,
            "budget_approval_at": _dump_ts(self.budget_approval_at),
            "customer_confirmation": self.customer_confirmation.value,
            "customer_confirmation_by": self.customer_confirmation_by,
            "customer_confirmation_at": _dump_ts(self.customer_confirmation_at),
            "created_at": _dump_ts(self.created_at),
            "updated_at": _dump_ts(self.updated_at),
            "attachments": [a.to_dict(include_content=include_content) for a in self.attachments],
            "audit_log": [e.to_dict() for e in self.audit_log],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Protocol:
        """Build a Protocol from its stored dict.

        Raises KeyError / ValueError / TypeError on malformed input; callers
        in the persistence layer decide whether to skip the record.
        """
        created_at = _load_ts(data["created_at"])
        return cls(
            id=str(data["id"]),
            protocol_code=data["protocol_code"],
            customer_email=data.get("customer_email") or "",
            subject=data.get("subject") or "",
            details=data.get("details") or "",
            responsible=data.get("responsible") or UNASSIGNED,
            created_by=data.get("created_by") or "",
            status=ProcessStatus(data.get("status") or ProcessStatus.REQUESTED.value),
            budget_approval=BudgetApproval(data.get("budget_approval") or BudgetApproval.PENDING.value),
            budget_approval_by=data.get("budget_approval_by"),
            budget_approval_at=_load_ts(data.get("budget_approval_at")),
            customer_confirmation=CustomerConfirmation(
                data.get("customer_confirmation") or CustomerConfirmation.PENDING.value
            ),
            customer_confirmation_by=data.get("customer_confirmation_by"),
            customer_confirmation_at=_load_ts(data.get("customer_confirmation_at")),
            created_at=created_at,
            updated_at=_load_ts(data.get("updated_at")) or created_at,
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            audit_log=[AuditEntry.from_dict(e) for e in data.get("audit_log") or []],
        )

    def __repr__(self):
        return f"<Protocol {self.protocol_code}: {self.status.value}>"
