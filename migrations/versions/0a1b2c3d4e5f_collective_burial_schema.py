"""collective burial schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


BILLING_STATUS = ("PENDING", "BILLED", "PAID")


def upgrade():
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "OPERATOR", name="user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "burial_slot",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contract_plot_id", sa.String(length=40), nullable=False),
        sa.Column("plot_number", sa.String(length=40), nullable=False),
        sa.Column("area_name", sa.String(length=60), nullable=False),
        sa.Column("applicant_name", sa.String(length=120), nullable=True),
        sa.Column("applicant_name_kana", sa.String(length=120), nullable=True),
        sa.Column("contract_date", sa.Date(), nullable=False),
        sa.Column("burial_capacity", sa.Integer(), nullable=False),
        sa.Column("current_burial_count", sa.Integer(), nullable=False),
        sa.Column("validity_period_years", sa.Integer(), nullable=False),
        sa.Column("capacity_reached_date", sa.Date(), nullable=True),
        sa.Column("billing_scheduled_date", sa.Date(), nullable=True),
        sa.Column("billing_status", sa.Enum(*BILLING_STATUS, name="billing_status"), nullable=False),
        sa.Column("billing_amount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("burial_capacity > 0", name="ck_slot_capacity_positive"),
        sa.CheckConstraint(
            "current_burial_count >= 0 AND current_burial_count <= burial_capacity",
            name="ck_slot_count_within_capacity",
        ),
        sa.CheckConstraint("validity_period_years > 0", name="ck_slot_validity_positive"),
        sa.CheckConstraint(
            "(capacity_reached_date IS NULL AND billing_scheduled_date IS NULL) "
            "OR (capacity_reached_date IS NOT NULL AND billing_scheduled_date IS NOT NULL)",
            name="ck_slot_billing_dates_paired",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_plot_id", name="uq_burial_slot_contract_plot"),
    )
    with op.batch_alter_table("burial_slot", schema=None) as batch_op:
        batch_op.create_index(
            "ix_burial_slot_status_scheduled",
            ["billing_status", "billing_scheduled_date"],
            unique=False,
        )

    op.create_table(
        "burial_application",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_number", sa.String(length=20), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "SCHEDULED", "COMPLETED", "CANCELLED", name="application_status"),
            nullable=False,
        ),
        sa.Column("application_date", sa.Date(), nullable=False),
        sa.Column("desired_date", sa.Date(), nullable=True),
        sa.Column("burial_type", sa.Enum("FAMILY", "RELATIVE", "OTHER", name="burial_type"), nullable=False),
        sa.Column("main_representative", sa.String(length=120), nullable=False),
        sa.Column("applicant_name", sa.String(length=120), nullable=False),
        sa.Column("applicant_name_kana", sa.String(length=120), nullable=False),
        sa.Column("applicant_phone", sa.String(length=30), nullable=False),
        sa.Column("applicant_email", sa.String(length=255), nullable=True),
        sa.Column("applicant_postal_code", sa.String(length=10), nullable=True),
        sa.Column("applicant_address", sa.String(length=255), nullable=False),
        sa.Column("ceremony_date", sa.Date(), nullable=True),
        sa.Column("officiant", sa.String(length=120), nullable=True),
        sa.Column("religion", sa.String(length=60), nullable=True),
        sa.Column("ceremony_location", sa.String(length=120), nullable=True),
        sa.Column("total_fee", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("deposit_amount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("payment_due_date", sa.Date(), nullable=True),
        sa.Column("special_requests", sa.String(length=1000), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["slot_id"], ["burial_slot.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_number", name="uq_burial_application_number"),
    )
    with op.batch_alter_table("burial_application", schema=None) as batch_op:
        batch_op.create_index("ix_burial_application_status", ["status"], unique=False)
        batch_op.create_index("ix_burial_application_slot_status", ["slot_id", "status"], unique=False)

    op.create_table(
        "buried_person",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("name_kana", sa.String(length=120), nullable=False),
        sa.Column("relationship", sa.String(length=60), nullable=False),
        sa.Column("death_date", sa.Date(), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("original_plot_number", sa.String(length=40), nullable=True),
        sa.Column("certificate_number", sa.String(length=40), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["burial_application.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "position", name="uq_buried_person_position"),
    )
    with op.batch_alter_table("buried_person", schema=None) as batch_op:
        batch_op.create_index("ix_buried_person_application_id", ["application_id"], unique=False)

    op.create_table(
        "billing_status_event",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.Enum(*BILLING_STATUS, name="billing_status"), nullable=False),
        sa.Column("to_status", sa.Enum(*BILLING_STATUS, name="billing_status"), nullable=False),
        sa.Column("billing_amount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("event_at", sa.DateTime(), nullable=False),
        sa.Column("details", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["slot_id"], ["burial_slot.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("billing_status_event", schema=None) as batch_op:
        batch_op.create_index("ix_billing_event_slot_at", ["slot_id", "event_at"], unique=False)


def downgrade():
    with op.batch_alter_table("billing_status_event", schema=None) as batch_op:
        batch_op.drop_index("ix_billing_event_slot_at")
    op.drop_table("billing_status_event")

    with op.batch_alter_table("buried_person", schema=None) as batch_op:
        batch_op.drop_index("ix_buried_person_application_id")
    op.drop_table("buried_person")

    with op.batch_alter_table("burial_application", schema=None) as batch_op:
        batch_op.drop_index("ix_burial_application_slot_status")
        batch_op.drop_index("ix_burial_application_status")
    op.drop_table("burial_application")

    with op.batch_alter_table("burial_slot", schema=None) as batch_op:
        batch_op.drop_index("ix_burial_slot_status_scheduled")
    op.drop_table("burial_slot")

    op.drop_table("user_account")
