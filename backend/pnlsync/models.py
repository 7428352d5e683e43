"""SQLAlchemy ORM models and enums.

This module defines the record store used by the sheet-sync core: clients
(with their delegated Google credential and report sheet), the per-client
cost model, and raw daily platform metrics. OAuth tokens are stored
Fernet-encrypted (see `pnlsync.security`).
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Date, Enum, Integer, ForeignKey, Numeric, Boolean, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class PlatformEnum(str, enum.Enum):
    google = "google"
    meta = "meta"
    tiktok = "tiktok"
    shopify = "shopify"
    other = "other"


# Core models ----------------------------------------------------

class Client(Base):
    """Client represents one agency customer with its own P&L report.

    Field ownership:
    - name/email/auto_sync_enabled: account management (read-only here)
    - google_*_token*, google_token_expiry: CredentialStore
    - google_sheet_id/google_sheet_url: SpreadsheetProvisioner
    - last_synced_at: SyncEngine (advanced only after a full sync)
    """
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)  # Report sheet is shared with this address
    created_at = Column(DateTime, default=datetime.utcnow)

    # Delegated Google OAuth credential (encrypted)
    google_access_token_enc = Column(String, nullable=True)
    google_refresh_token_enc = Column(String, nullable=True)
    google_token_expiry = Column(DateTime(timezone=True), nullable=True)

    # External report
    google_sheet_id = Column(String, nullable=True)
    google_sheet_url = Column(String, nullable=True)

    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    financial_profile = relationship(
        "FinancialProfile", back_populates="client", uselist=False, cascade="all, delete-orphan"
    )
    daily_metrics = relationship("DailyMetric", back_populates="client", cascade="all, delete-orphan")

    def __str__(self):
        return self.name


class FinancialProfile(Base):
    """Cost model parameters for a client (one-to-one).

    Percentages are expressed as 0-100 (35 means 35%), flat amounts in the
    client's currency per order.
    """
    __tablename__ = "financial_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, unique=True)

    cogs_percentage = Column(Numeric(9, 4), nullable=False, default=0)
    payment_processing_fee_percentage = Column(Numeric(9, 4), nullable=False, default=0)
    merchant_account_fee_flat = Column(Numeric(18, 4), nullable=False, default=0)
    shipping_cost_per_order = Column(Numeric(18, 4), nullable=False, default=0)
    fulfillment_cost_per_order = Column(Numeric(18, 4), nullable=False, default=0)
    target_margin_percentage = Column(Numeric(9, 4), nullable=False, default=0)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("Client", back_populates="financial_profile")


class DailyMetric(Base):
    """Raw per-platform performance for one client on one day.

    Source of truth for the report. Written by ingestion, only read here.
    """
    __tablename__ = "daily_metrics"
    __table_args__ = (
        UniqueConstraint("client_id", "date", "platform", name="uq_daily_metric_client_date_platform"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    platform = Column(Enum(PlatformEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)

    revenue = Column(Numeric(18, 4), nullable=False, default=0)
    orders = Column(Integer, nullable=False, default=0)
    ad_spend = Column(Numeric(18, 4), nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)

    client = relationship("Client", back_populates="daily_metrics")
