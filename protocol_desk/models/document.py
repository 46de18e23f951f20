"""
Protocol Desk
Document-store table for the SQL persistence backend.

Models:
    - ProtocolDocument: one row per protocol, body holds the JSON document.
"""

from datetime import UTC, datetime

from protocol_desk.models import db


class ProtocolDocument(db.Model):
    """
    Stored protocol document.

    ``position`` preserves the record set's natural (newest-first) order,
    ``body`` is the output of ``Protocol.to_dict()`` serialised as JSON.
    """

    __tablename__ = "protocol_documents"
    __table_args__ = (
        db.Index("idx_protocol_documents_position", "position"),
    )

    id = db.Column(db.String(36), primary_key=True, comment="Protocol.id")
    position = db.Column(db.Integer, nullable=False, default=0)
    body = db.Column(db.Text, nullable=False, default="{}")
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self):
        return f"<ProtocolDocument {self.id} @{self.position}>"
