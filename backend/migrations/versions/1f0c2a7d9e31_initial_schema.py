"""Initial schema for the health dashboard.

Revision ID: 1f0c2a7d9e31
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "1f0c2a7d9e31"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # Sync bookkeeping
    op.create_table(
        "sync_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("sync_type", sa.String(length=20), nullable=False),
        sa.Column("trigger_type", sa.String(length=20), nullable=False),
        sa.Column("triggered_by", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        if_not_exists=True,
    )

    op.create_table(
        "manual_refresh_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.String(length=64), nullable=False),
        sa.Column("source_ip", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=True),
        sa.Column("request_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed", sa.Boolean(), nullable=False),
        sa.Column("notification_sent", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("request_id"),
        if_not_exists=True,
    )

    op.create_table(
        "rate_limit_tracking",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("hour_window", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_ip", sa.String(length=64), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False),
        sa.Column("last_request_time", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("hour_window", "source_ip", name="uq_rate_limit_window_ip"),
        if_not_exists=True,
    )

    # Caches
    op.create_table(
        "csv_cache",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("local_path", sa.Text(), nullable=False),
        sa.Column("remote_last_modified", sa.String(length=100), nullable=True),
        sa.Column("remote_etag", sa.String(length=255), nullable=True),
        sa.Column("local_file_hash", sa.String(length=64), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("last_checked", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.UniqueConstraint("url"),
        sa.UniqueConstraint(
            "url", "remote_last_modified", "remote_etag", name="uq_csv_cache_generation"
        ),
        if_not_exists=True,
    )

    op.create_table(
        "dashboard_cache",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("data_json", sa.Text(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_stale", sa.Boolean(), nullable=False),
        _created_at(),
        if_not_exists=True,
    )

    # Datasets
    op.create_table(
        "disease_stats",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("current_count", sa.Integer(), nullable=False),
        sa.Column("week_ago_count", sa.Integer(), nullable=False),
        sa.Column("month_ago_count", sa.Integer(), nullable=False),
        sa.Column("two_months_ago_count", sa.Integer(), nullable=False),
        sa.Column("year_ago_count", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("last_updated", sa.String(length=50), nullable=True),
        sa.Column("data_source", sa.String(length=100), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("region", sa.String(length=10), nullable=False),
        _created_at(),
        if_not_exists=True,
    )

    op.create_table(
        "wastewater_data",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("sample_date", sa.String(length=10), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("concentration", sa.Float(), nullable=False),
        sa.Column("trend", sa.String(length=20), nullable=False),
        sa.Column("pathogen", sa.String(length=50), nullable=True),
        sa.Column("average_concentration", sa.Float(), nullable=False),
        sa.Column("alert_level", sa.String(length=20), nullable=False),
        sa.Column("last_updated", sa.String(length=50), nullable=True),
        sa.Column("pathogens", sa.Text(), nullable=True),
        _created_at(),
        if_not_exists=True,
    )

    op.create_table(
        "vaccination_data",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("region", sa.String(length=10), nullable=False),
        sa.Column("vaccine_name", sa.String(length=255), nullable=False),
        sa.Column("current_year", sa.Float(), nullable=True),
        sa.Column("five_years_ago", sa.Float(), nullable=True),
        sa.Column("ten_years_ago", sa.Float(), nullable=True),
        sa.Column("last_available_rate", sa.Float(), nullable=True),
        sa.Column("last_available_date", sa.String(length=100), nullable=True),
        sa.Column("collection_method", sa.Text(), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("calculation_details", sa.Text(), nullable=True),
        _created_at(),
        if_not_exists=True,
    )

    op.create_table(
        "news_data",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("alert_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("date", sa.String(length=100), nullable=True),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("region", sa.String(length=10), nullable=True),
        _created_at(),
        sa.UniqueConstraint("alert_id"),
        if_not_exists=True,
    )

    # Indexes
    op.create_index("ix_sync_log_status", "sync_log", ["status"], if_not_exists=True)
    op.create_index("idx_sync_log_started_at", "sync_log", ["started_at"], if_not_exists=True)
    op.create_index(
        "idx_manual_refresh_pending",
        "manual_refresh_requests",
        ["source_ip", "executed"],
        if_not_exists=True,
    )
    op.create_index(
        "idx_manual_refresh_request_time",
        "manual_refresh_requests",
        ["request_time"],
        if_not_exists=True,
    )
    op.create_index(
        "idx_dashboard_cache_last_updated",
        "dashboard_cache",
        ["last_updated"],
        if_not_exists=True,
    )
    op.create_index("ix_disease_stats_region", "disease_stats", ["region"], if_not_exists=True)
    op.create_index(
        "ix_wastewater_data_sample_date", "wastewater_data", ["sample_date"], if_not_exists=True
    )
    op.create_index(
        "ix_vaccination_data_region", "vaccination_data", ["region"], if_not_exists=True
    )
    op.create_index("ix_news_data_region", "news_data", ["region"], if_not_exists=True)


def downgrade() -> None:
    op.drop_index("ix_news_data_region", table_name="news_data", if_exists=True)
    op.drop_index("ix_vaccination_data_region", table_name="vaccination_data", if_exists=True)
    op.drop_index("ix_wastewater_data_sample_date", table_name="wastewater_data", if_exists=True)
    op.drop_index("ix_disease_stats_region", table_name="disease_stats", if_exists=True)
    op.drop_index(
        "idx_dashboard_cache_last_updated", table_name="dashboard_cache", if_exists=True
    )
    op.drop_index(
        "idx_manual_refresh_request_time",
        table_name="manual_refresh_requests",
        if_exists=True,
    )
    op.drop_index(
        "idx_manual_refresh_pending", table_name="manual_refresh_requests", if_exists=True
    )
    op.drop_index("idx_sync_log_started_at", table_name="sync_log", if_exists=True)
    op.drop_index("ix_sync_log_status", table_name="sync_log", if_exists=True)

    op.drop_table("news_data", if_exists=True)
    op.drop_table("vaccination_data", if_exists=True)
    op.drop_table("wastewater_data", if_exists=True)
    op.drop_table("disease_stats", if_exists=True)
    op.drop_table("dashboard_cache", if_exists=True)
    op.drop_table("csv_cache", if_exists=True)
    op.drop_table("rate_limit_tracking", if_exists=True)
    op.drop_table("manual_refresh_requests", if_exists=True)
    op.drop_table("sync_log", if_exists=True)
