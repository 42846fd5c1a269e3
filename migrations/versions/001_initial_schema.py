"""Initial schema: rides and pools, plus the PostGIS proximity index.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUSES = ("pending", "pooled", "cancelled", "completed")
POOL_STATUSES = ("forming", "confirmed", "in_progress", "completed", "cancelled")


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── pools ─────────────────────────────────────────────────────────
    op.create_table(
        "pools",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_ids", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*POOL_STATUSES, name="poolstatus"),
            nullable=False,
        ),
        sa.Column("seats_occupied", sa.Integer, nullable=False),
        sa.Column("luggage_total", sa.Integer, nullable=False),
        sa.Column("centroid_lat", sa.Float, nullable=True),
        sa.Column("centroid_lng", sa.Float, nullable=True),
        sa.Column("bbox_min_lat", sa.Float, nullable=True),
        sa.Column("bbox_max_lat", sa.Float, nullable=True),
        sa.Column("bbox_min_lng", sa.Float, nullable=True),
        sa.Column("bbox_max_lng", sa.Float, nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("h3_cell", sa.String(20), nullable=False),
        sa.Column("max_detour_km", sa.Float, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("confirmed_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("seats_occupied >= 0", name="ck_pools_seats_nonneg"),
        sa.CheckConstraint("luggage_total >= 0", name="ck_pools_luggage_nonneg"),
    )
    op.create_index("idx_pools_status_expires", "pools", ["status", "expires_at"])
    op.create_index("idx_pools_cell", "pools", ["h3_cell"])
    op.create_index(
        "idx_pools_status_seats_created",
        "pools",
        ["status", "seats_occupied", "created_at"],
    )
    # Backs ST_DWithin on the pickup centroid in the candidate query
    op.execute(
        "CREATE INDEX idx_pools_pickup_geog ON pools USING gist "
        "((ST_SetSRID(ST_MakePoint(pickup_lng, pickup_lat), 4326)::geography))"
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("passenger_id", sa.Integer, nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(255), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUSES, name="ridestatus"),
            nullable=False,
        ),
        sa.Column("luggage_count", sa.Integer, nullable=False),
        sa.Column("pool_id", sa.Integer, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("estimated_price", sa.Float, nullable=True),
        sa.Column("actual_price", sa.Float, nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("requested_at", sa.DateTime, nullable=False),
        sa.Column("cancelled_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.CheckConstraint(
            "luggage_count BETWEEN 0 AND 3", name="ck_rides_luggage_range"
        ),
    )
    op.create_index("idx_rides_status_requested", "rides", ["status", "requested_at"])
    op.create_index("idx_rides_pool", "rides", ["pool_id"])
    op.create_index("idx_rides_passenger", "rides", ["passenger_id"])
    op.create_index("idx_rides_idempotency", "rides", ["idempotency_key"])


def downgrade() -> None:
    op.drop_table("rides")
    op.execute("DROP INDEX IF EXISTS idx_pools_pickup_geog")
    op.drop_table("pools")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS poolstatus")
