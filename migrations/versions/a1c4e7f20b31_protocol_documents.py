"""protocol_documents

Document-store table for the sql protocol backend.

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-19 20:30:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c4e7f20b31"
down_revision = None
branch_labels = None
depends_on = None


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def upgrade():
    bind = op.get_bind()
    if "protocol_documents" in _table_names(bind):
        return

    op.create_table(
        "protocol_documents",
        sa.Column("id", sa.String(length=36), nullable=False, comment="Protocol.id"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_protocol_documents_position", "protocol_documents", ["position"])


def downgrade():
    bind = op.get_bind()
    if "protocol_documents" not in _table_names(bind):
        return

    op.drop_index("idx_protocol_documents_position", table_name="protocol_documents")
    op.drop_table("protocol_documents")
