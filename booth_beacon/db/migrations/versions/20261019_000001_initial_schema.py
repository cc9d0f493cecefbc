"""Initial schema for the ingestion pipeline.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the tables used by a source run:
- sources: registry rows with run counters and the run claim
- snapshots: append-only raw content cache
- booths: canonical deduplicated booth locations
- extraction_patterns: learned per-source extraction rules
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("urls_json", sa.Text(), default="[]"),
        sa.Column("extractor_type", sa.String(50), default="generic"),
        sa.Column("source_type", sa.String(30), default="directory"),
        sa.Column("enabled", sa.Boolean(), default=True),
        sa.Column("priority", sa.Integer(), default=50),
        sa.Column("status", sa.String(20), default="idle"),
        sa.Column("total_found", sa.Integer(), default=0),
        sa.Column("total_added", sa.Integer(), default=0),
        sa.Column("total_updated", sa.Integer(), default=0),
        sa.Column("consecutive_failures", sa.Integer(), default=0),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_crawled_at", sa.DateTime(), nullable=True),
        sa.Column("last_success_at", sa.DateTime(), nullable=True),
        sa.Column("run_started_at", sa.DateTime(), nullable=True),
        sa.Column("custom_config_json", sa.Text(), default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sources_name", "sources", ["name"], unique=True)
    op.create_index("ix_sources_enabled", "sources", ["enabled"])
    op.create_index("ix_sources_status", "sources", ["status"])

    op.create_table(
        "snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("url", sa.String(2000), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("mime_type", sa.String(100), default="text/html"),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_snapshots_source_id", "snapshots", ["source_id"])
    op.create_index("ix_snapshots_url", "snapshots", ["url"])
    op.create_index("ix_snapshots_content_hash", "snapshots", ["content_hash"])
    op.create_index("ix_snapshots_last_seen_at", "snapshots", ["last_seen_at"])

    op.create_table(
        "booths",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("name_key", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("city", sa.String(255), nullable=True),
        sa.Column("city_key", sa.String(255), default=""),
        sa.Column("region", sa.String(255), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=True),
        sa.Column("source_trust", sa.Integer(), default=0),
        sa.Column("source_names_json", sa.Text(), default="[]"),
        sa.Column("source_urls_json", sa.Text(), default="[]"),
        sa.Column("last_extractor", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_booths_name_key", "booths", ["name_key"])
    op.create_index("ix_booths_city_key", "booths", ["city_key"])
    op.create_index("ix_booths_source_id", "booths", ["source_id"])

    op.create_table(
        "extraction_patterns",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("container_selector", sa.String(500), nullable=False),
        sa.Column("field_selectors_json", sa.Text(), default="{}"),
        sa.Column("signature", sa.String(64), nullable=False),
        sa.Column("confidence", sa.Float(), default=0.6),
        sa.Column("usable", sa.Boolean(), default=True),
        sa.Column("active", sa.Boolean(), default=True),
        sa.Column("success_count", sa.Integer(), default=0),
        sa.Column("failure_count", sa.Integer(), default=0),
        sa.Column("learned_at", sa.DateTime(), nullable=False),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_extraction_patterns_source_id", "extraction_patterns", ["source_id"])
    op.create_index("ix_extraction_patterns_signature", "extraction_patterns", ["signature"])
    op.create_index("ix_extraction_patterns_active", "extraction_patterns", ["active"])


def downgrade() -> None:
    op.drop_index("ix_extraction_patterns_active", table_name="extraction_patterns")
    op.drop_index("ix_extraction_patterns_signature", table_name="extraction_patterns")
    op.drop_index("ix_extraction_patterns_source_id", table_name="extraction_patterns")
    op.drop_table("extraction_patterns")

    op.drop_index("ix_booths_source_id", table_name="booths")
    op.drop_index("ix_booths_city_key", table_name="booths")
    op.drop_index("ix_booths_name_key", table_name="booths")
    op.drop_table("booths")

    op.drop_index("ix_snapshots_last_seen_at", table_name="snapshots")
    op.drop_index("ix_snapshots_content_hash", table_name="snapshots")
    op.drop_index("ix_snapshots_url", table_name="snapshots")
    op.drop_index("ix_snapshots_source_id", table_name="snapshots")
    op.drop_table("snapshots")

    op.drop_index("ix_sources_status", table_name="sources")
    op.drop_index("ix_sources_enabled", table_name="sources")
    op.drop_index("ix_sources_name", table_name="sources")
    op.drop_table("sources")
