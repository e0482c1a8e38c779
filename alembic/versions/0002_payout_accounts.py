"""payout accounts, payment version

Revision ID: 0002_payout_accounts
Revises: 0001_initial
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0002_payout_accounts"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payout_accounts",
        sa.Column("provider_id", sa.String(length=128), primary_key=True),
        sa.Column("payout_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    with op.batch_alter_table("payments") as batch:
        batch.add_column(sa.Column("version", sa.Integer(), nullable=False, server_default="1"))


def downgrade() -> None:
    with op.batch_alter_table("payments") as batch:
        batch.drop_column("version")
    op.drop_table("payout_accounts")
