"""Create reminder_queue and message_logs (idempotent)

Revision ID: 20261001_reminder_queue
Revises:
Create Date: 2026-10-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_reminder_queue"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # The queue falls back to memory while this table is missing, so the
    # migration may run against a database that already has it.
    if not inspector.has_table("reminder_queue"):
        op.create_table(
            "reminder_queue",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("barbershop_id", sa.String(length=64), nullable=False),
            sa.Column("appointment_id", sa.String(length=64), nullable=False),
            sa.Column("notification_type", sa.String(length=150), nullable=False),
            sa.Column("scheduled_for", sa.DateTime(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.UniqueConstraint("appointment_id", "notification_type", name="uq_reminder_queue_appointment_type"),
        )
        op.create_index(
            "ix_reminder_queue_shop_status_due",
            "reminder_queue",
            ["barbershop_id", "status", "scheduled_for"],
        )
        op.create_index("ix_reminder_queue_appointment", "reminder_queue", ["appointment_id"])
    else:
        existing_indexes = {idx["name"] for idx in inspector.get_indexes("reminder_queue")}
        if "ix_reminder_queue_shop_status_due" not in existing_indexes:
            op.execute(
                "CREATE INDEX IF NOT EXISTS ix_reminder_queue_shop_status_due "
                "ON reminder_queue (barbershop_id, status, scheduled_for)"
            )
        if "ix_reminder_queue_appointment" not in existing_indexes:
            op.execute(
                "CREATE INDEX IF NOT EXISTS ix_reminder_queue_appointment "
                "ON reminder_queue (appointment_id)"
            )
        existing_unique = {uc["name"] for uc in inspector.get_unique_constraints("reminder_queue")}
        if "uq_reminder_queue_appointment_type" not in existing_unique:
            op.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_reminder_queue_appointment_type "
                "ON reminder_queue (appointment_id, notification_type)"
            )

    if not inspector.has_table("message_logs"):
        op.create_table(
            "message_logs",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("barbershop_id", sa.String(length=64), nullable=False),
            sa.Column("appointment_id", sa.String(length=64), nullable=True),
            sa.Column("client_name", sa.String(length=200), nullable=True),
            sa.Column("client_phone", sa.String(length=20), nullable=True),
            sa.Column("notification_type", sa.String(length=150), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_message_logs_shop_sent", "message_logs", ["barbershop_id", "sent_at"])


def downgrade():
    op.execute("DROP INDEX IF EXISTS ix_message_logs_shop_sent")
    op.execute("DROP TABLE IF EXISTS message_logs")
    op.execute("DROP INDEX IF EXISTS ix_reminder_queue_appointment")
    op.execute("DROP INDEX IF EXISTS ix_reminder_queue_shop_status_due")
    op.execute("DROP TABLE IF EXISTS reminder_queue")
