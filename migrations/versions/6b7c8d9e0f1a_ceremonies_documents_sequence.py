"""ceremonies, documents and application number sequence

Revision ID: 6b7c8d9e0f1a
Revises: 0a1b2c3d4e5f
Create Date: 2026-10-17 15:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "6b7c8d9e0f1a"
down_revision = "0a1b2c3d4e5f"
branch_labels = None
depends_on = None


def upgrade():
    number_sequence = op.create_table(
        "number_sequence",
        sa.Column("name", sa.String(length=40), nullable=False),
        sa.Column("current_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )
    bind = op.get_bind()
    numbers = bind.execute(sa.text("SELECT application_number FROM burial_application")).scalars()
    highest = max((int(number.rsplit("-", 1)[-1]) for number in numbers), default=0)
    op.bulk_insert(number_sequence, [{"name": "burial_application", "current_value": highest}])

    op.create_table(
        "burial_ceremony",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("ceremony_date", sa.Date(), nullable=True),
        sa.Column("officiant", sa.String(length=120), nullable=True),
        sa.Column("religion", sa.String(length=60), nullable=True),
        sa.Column("participants", sa.Integer(), nullable=True),
        sa.Column("location", sa.String(length=120), nullable=True),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.CheckConstraint("participants IS NULL OR participants >= 0", name="ck_ceremony_participants"),
        sa.ForeignKeyConstraint(["application_id"], ["burial_application.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "position", name="uq_burial_ceremony_position"),
    )
    with op.batch_alter_table("burial_ceremony", schema=None) as batch_op:
        batch_op.create_index("ix_burial_ceremony_application_id", ["application_id"], unique=False)

    op.create_table(
        "burial_document",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "document_type",
            sa.Enum("PERMIT", "CERTIFICATE", "AGREEMENT", "OTHER", name="document_type"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("issued_date", sa.Date(), nullable=True),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["burial_application.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "position", name="uq_burial_document_position"),
    )
    with op.batch_alter_table("burial_document", schema=None) as batch_op:
        batch_op.create_index("ix_burial_document_application_id", ["application_id"], unique=False)


def downgrade():
    with op.batch_alter_table("burial_document", schema=None) as batch_op:
        batch_op.drop_index("ix_burial_document_application_id")
    op.drop_table("burial_document")

    with op.batch_alter_table("burial_ceremony", schema=None) as batch_op:
        batch_op.drop_index("ix_burial_ceremony_application_id")
    op.drop_table("burial_ceremony")

    op.drop_table("number_sequence")
