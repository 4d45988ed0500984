"""add accounts.initial_balance_cents

Existing rows keep NULL; the services infer and store the value the first
time such an account is reconciled.

Revision ID: 202610080900
Revises: 202610010900
Create Date: 2026-10-08 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610080900"
down_revision = "202610010900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("accounts") as batch:
        batch.add_column(sa.Column("initial_balance_cents", sa.Integer(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("accounts") as batch:
        batch.drop_column("initial_balance_cents")
