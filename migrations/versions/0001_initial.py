"""Initial schema: driver_presence, driver_accounts, rides"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "driver_presence",
        sa.Column("driver_id", sa.String, primary_key=True),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("service", sa.String(30), nullable=True),
        sa.Column("accuracy_m", sa.Float, nullable=True),
        sa.Column("speed_kmh", sa.Float, nullable=True),
        sa.Column("heading_deg", sa.Float, nullable=True),
        sa.Column("device_os", sa.String(30), nullable=True),
        sa.Column("app_version", sa.String(30), nullable=True),
        sa.Column("battery_pct", sa.Integer, nullable=True),
    )
    op.create_index("idx_presence_last_seen", "driver_presence", ["last_seen"])
    op.create_index("idx_presence_location", "driver_presence", ["lat", "lng"])

    op.create_table(
        "driver_accounts",
        sa.Column("driver_id", sa.String, primary_key=True),
        sa.Column("payment_provider", sa.String(30), nullable=True),
        sa.Column("payment_link", sa.String(500), nullable=True),
        sa.Column("payment_active", sa.Boolean, nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("driver_id", sa.String, nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("dropoff_address", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="offered"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("driver_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rider_consented_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(5), nullable=True),
    )
    op.create_index("ix_rides_rider_id", "rides", ["rider_id"])
    op.create_index("ix_rides_driver_id", "rides", ["driver_id"])
    op.create_index("ix_rides_status", "rides", ["status"])
    op.create_index("ix_rides_created_at", "rides", ["created_at"])
    # One open ride per driver: assignment races resolve on this index
    op.create_index(
        "uq_rides_driver_open",
        "rides",
        ["driver_id"],
        unique=True,
        postgresql_where=sa.text("ended_at IS NULL"),
        sqlite_where=sa.text("ended_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_table("rides")
    op.drop_table("driver_accounts")
    op.drop_table("driver_presence")
