"""add global identities, clinic profiles and appointment links

Revision ID: 0002_federated_identity
Revises: 0001_legacy_schema
Create Date: 2026-09-15 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_federated_identity"
down_revision = "0001_legacy_schema"
branch_labels = None
depends_on = None


def _profile_status() -> sa.Enum:
    return sa.Enum("active", "inactive", name="clinic_profile_status")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    for table in ("global_doctors", "global_patients"):
        if table in tables:
            continue
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("match_phone", sa.String(length=50), nullable=True),
            sa.Column("match_email", sa.String(length=320), nullable=True),
            sa.Column("match_date_of_birth", sa.Date(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=False,
            ),
            sa.UniqueConstraint("user_id", name=f"uq_{table}_user_id"),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])
        op.create_index(f"ix_{table}_match_phone", table, ["match_phone"])
        op.create_index(f"ix_{table}_match_email", table, ["match_email"])

    if "clinic_doctors" not in tables:
        op.create_table(
            "clinic_doctors",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
            sa.Column(
                "global_doctor_id",
                sa.Integer(),
                sa.ForeignKey("global_doctors.id"),
                nullable=False,
            ),
            sa.Column("specialization", sa.String(length=200), nullable=True),
            sa.Column("license_number", sa.String(length=120), nullable=True),
            sa.Column("experience_years", sa.Integer(), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", _profile_status(), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            sa.UniqueConstraint(
                "clinic_id",
                "global_doctor_id",
                name="uq_clinic_doctors_clinic_global",
            ),
        )
        op.create_index("ix_clinic_doctors_clinic_id", "clinic_doctors", ["clinic_id"])
        op.create_index("ix_clinic_doctors_global_doctor_id", "clinic_doctors", ["global_doctor_id"])
        op.create_index("ix_clinic_doctors_phone", "clinic_doctors", ["phone"])

    if "clinic_patients" not in tables:
        op.create_table(
            "clinic_patients",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
            sa.Column(
                "global_patient_id",
                sa.Integer(),
                sa.ForeignKey("global_patients.id"),
                nullable=False,
            ),
            sa.Column("legacy_patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("gender", sa.String(length=20), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", _profile_status(), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            sa.UniqueConstraint(
                "clinic_id",
                "global_patient_id",
                name="uq_clinic_patients_clinic_global",
            ),
        )
        op.create_index("ix_clinic_patients_clinic_id", "clinic_patients", ["clinic_id"])
        op.create_index("ix_clinic_patients_global_patient_id", "clinic_patients", ["global_patient_id"])
        op.create_index(
            "uq_clinic_patients_legacy_patient_id",
            "clinic_patients",
            ["legacy_patient_id"],
            unique=True,
            postgresql_where=sa.text("legacy_patient_id IS NOT NULL"),
            sqlite_where=sa.text("legacy_patient_id IS NOT NULL"),
        )
        op.create_index("ix_clinic_patients_phone", "clinic_patients", ["phone"])
        op.create_index("ix_clinic_patients_email", "clinic_patients", ["email"])

    # Additive and nullable: legacy readers and writers keep working.
    columns = {column["name"] for column in inspector.get_columns("appointments")}
    with op.batch_alter_table("appointments") as batch:
        if "clinic_doctor_id" not in columns:
            batch.add_column(sa.Column("clinic_doctor_id", sa.Integer(), nullable=True))
            batch.create_foreign_key(
                "fk_appointments_clinic_doctor_id",
                "clinic_doctors",
                ["clinic_doctor_id"],
                ["id"],
            )
            batch.create_index("ix_appointments_clinic_doctor_id", ["clinic_doctor_id"])
        if "clinic_patient_id" not in columns:
            batch.add_column(sa.Column("clinic_patient_id", sa.Integer(), nullable=True))
            batch.create_foreign_key(
                "fk_appointments_clinic_patient_id",
                "clinic_patients",
                ["clinic_patient_id"],
                ["id"],
            )
            batch.create_index("ix_appointments_clinic_patient_id", ["clinic_patient_id"])


def downgrade() -> None:
    with op.batch_alter_table("appointments") as batch:
        batch.drop_index("ix_appointments_clinic_patient_id")
        batch.drop_constraint("fk_appointments_clinic_patient_id", type_="foreignkey")
        batch.drop_column("clinic_patient_id")
        batch.drop_index("ix_appointments_clinic_doctor_id")
        batch.drop_constraint("fk_appointments_clinic_doctor_id", type_="foreignkey")
        batch.drop_column("clinic_doctor_id")
    op.drop_table("clinic_patients")
    op.drop_table("clinic_doctors")
    op.drop_table("global_patients")
    op.drop_table("global_doctors")
    sa.Enum(name="clinic_profile_status").drop(op.get_bind(), checkfirst=True)
