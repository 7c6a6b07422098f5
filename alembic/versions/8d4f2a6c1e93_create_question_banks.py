"""create question_banks directory table

Revision ID: 8d4f2a6c1e93
Revises: 3b7e1c9d2a40
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d4f2a6c1e93"
down_revision: str | Sequence[str] | None = "3b7e1c9d2a40"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "question_banks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("registered_at", sa.Integer(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("question_banks")
