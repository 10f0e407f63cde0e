"""add federation migration ledger

Revision ID: 0003_federation_migration_ledger
Revises: 0002_federated_identity
Create Date: 2026-09-22 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0003_federation_migration_ledger"
down_revision = "0002_federated_identity"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "federation_migration_ledger" not in inspector.get_table_names():
        op.create_table(
            "federation_migration_ledger",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("stage", sa.String(length=40), nullable=False),
            sa.Column("legacy_id", sa.String(length=64), nullable=False),
            sa.Column("clinic_id", sa.Integer(), nullable=True),
            sa.Column("outcome", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.String(length=80), nullable=True),
            sa.Column("target_id", sa.Integer(), nullable=True),
            sa.Column("details_json", sa.JSON(), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=False,
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=False,
            ),
            sa.UniqueConstraint(
                "stage",
                "legacy_id",
                name="uq_federation_migration_ledger_key",
            ),
        )
        op.create_index(
            "ix_federation_migration_ledger_clinic_id",
            "federation_migration_ledger",
            ["clinic_id"],
        )


def downgrade() -> None:
    op.drop_index(
        "ix_federation_migration_ledger_clinic_id",
        table_name="federation_migration_ledger",
    )
    op.drop_table("federation_migration_ledger")
