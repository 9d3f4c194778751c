"""Limit reminder_queue uniqueness to open rows (idempotent)

Revision ID: 20261020_reminder_open_key
Revises: 20261001_reminder_queue
Create Date: 2026-10-20
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_reminder_open_key"
down_revision = "20261001_reminder_queue"
branch_labels = None
depends_on = None


OPEN_ROWS = "status IN ('pending', 'error')"


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if not inspector.has_table("reminder_queue"):
        return

    # The full key also covered sent and cancelled rows.
    existing_unique = {uc["name"] for uc in inspector.get_unique_constraints("reminder_queue")}
    if "uq_reminder_queue_appointment_type" in existing_unique:
        with op.batch_alter_table("reminder_queue") as batch_op:
            batch_op.drop_constraint("uq_reminder_queue_appointment_type", type_="unique")
    op.execute("DROP INDEX IF EXISTS uq_reminder_queue_appointment_type")

    existing_indexes = {idx["name"] for idx in inspector.get_indexes("reminder_queue")}
    if "uq_reminder_queue_open_key" not in existing_indexes:
        op.create_index(
            "uq_reminder_queue_open_key",
            "reminder_queue",
            ["appointment_id", "notification_type"],
            unique=True,
            postgresql_where=sa.text(OPEN_ROWS),
            sqlite_where=sa.text(OPEN_ROWS),
        )


def downgrade():
    op.execute("DROP INDEX IF EXISTS uq_reminder_queue_open_key")
    # Restoring the full key fails while a key has more than one row; clear history first.
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_reminder_queue_appointment_type "
        "ON reminder_queue (appointment_id, notification_type)"
    )
