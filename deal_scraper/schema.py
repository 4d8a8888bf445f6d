"""Table definitions for the deal scraping store."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()

scraping_sources = Table(
    "scraping_sources",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("url", Text, nullable=False),
    Column("priority", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("scraper_config", Text, nullable=False),
    Column("last_scraped_at", DateTime(timezone=True)),
    Column("last_scrape_status", String(16)),
    Column("last_scrape_deals_found", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

bank_deals = Table(
    "bank_deals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bank_name", String(255), nullable=False, unique=True),
    Column("reward_amount", Numeric(12, 2), nullable=False),
    Column("required_direct_debits", Integer, nullable=False, server_default="0"),
    Column("min_pay_in", Numeric(12, 2), nullable=False, server_default="0"),
    Column("debit_card_transactions", Integer, nullable=False, server_default="0"),
    Column("expiry_date", Date),
    Column("source_name", String(255)),
    Column("source_url", Text),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

scraping_runs = Table(
    "scraping_runs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("source_id", Integer, nullable=False),
    Column("source_name", String(255), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("finished_at", DateTime(timezone=True)),
    Column("status", String(16), nullable=False),
    Column("deals_found", Integer, nullable=False, server_default="0"),
    Column("deals_added", Integer, nullable=False, server_default="0"),
    Column("deals_updated", Integer, nullable=False, server_default="0"),
    Column("deals_unchanged", Integer, nullable=False, server_default="0"),
    Column("conflicts", Integer, nullable=False, server_default="0"),
    Column("defective", Integer, nullable=False, server_default="0"),
    Column("errors", Text, nullable=False, server_default="[]"),
    Index("ix_scraping_runs_source_started", "source_id", "started_at"),
)

scraping_conflicts = Table(
    "scraping_conflicts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("deal_id", Integer, nullable=False),
    Column("deal_name", String(255), nullable=False),
    Column("source_id", Integer),
    Column("run_id", String(32)),
    Column("differences", Text, nullable=False),
    Column("status", String(16), nullable=False, server_default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("resolved_at", DateTime(timezone=True)),
    Column("resolved_by", String(255)),
    Index("ix_scraping_conflicts_status", "status"),
)
