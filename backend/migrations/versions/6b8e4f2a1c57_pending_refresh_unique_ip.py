"""One pending buffered refresh per source IP.

Revision ID: 6b8e4f2a1c57
Revises: 1f0c2a7d9e31
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "6b8e4f2a1c57"
down_revision: str | None = "1f0c2a7d9e31"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Keep only the newest pending request per IP before enforcing uniqueness
    op.execute(
        """
        UPDATE manual_refresh_requests
        SET executed = TRUE
        WHERE executed = FALSE
          AND id NOT IN (
              SELECT MAX(id) FROM manual_refresh_requests
              WHERE executed = FALSE
              GROUP BY source_ip
          )
        """
    )
    op.create_index(
        "uq_manual_refresh_pending_ip",
        "manual_refresh_requests",
        ["source_ip"],
        unique=True,
        postgresql_where=sa.text("NOT executed"),
        sqlite_where=sa.text("executed = 0"),
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_index(
        "uq_manual_refresh_pending_ip", table_name="manual_refresh_requests", if_exists=True
    )
