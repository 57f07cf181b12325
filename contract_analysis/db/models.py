"""
SQLAlchemy Models for Database
==============================

Schema for contract tracking:
- Organizations (tenants, the unit of data isolation)
- Users (uploader identity, one organization each)
- Contracts (stored upload + analysis state)

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Enum, ForeignKey,
    BigInteger, Index, JSON
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    """Organization-level roles"""
    ADMIN = "admin"
    MEMBER = "member"


class ContractStatus(str, enum.Enum):
    """
    Contract lifecycle status.

    The pipeline only produces PROCESSING, ACTIVE and FAILED. The remaining
    states are administrative and set outside the ingestion/analysis path.
    """
    PROCESSING = "processing"
    ACTIVE = "active"
    FAILED = "failed"
    ARCHIVED = "archived"
    EXPIRED = "expired"
    DRAFT = "draft"
    EXPIRING = "expiring"


# =============================================================================
# ORGANIZATION MODELS
# =============================================================================

class Organization(Base):
    """Tenant"""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(256), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    users = relationship("User", back_populates="organization", cascade="all, delete-orphan")
    contracts = relationship("Contract", back_populates="organization", cascade="all, delete-orphan")


class User(Base):
    """User in the system"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(256), unique=True, nullable=False)
    name = Column(String(256), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.MEMBER, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="users")


# =============================================================================
# CONTRACTS
# =============================================================================

class Contract(Base):
    """
    Uploaded contract and its analysis state.

    `status`, `analysis_results`, `analysis_error` and the derived fields
    are written only through state_machine.mark_active / mark_failed.
    """
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    uploaded_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Display-only, untrusted
    name = Column(String(512), nullable=False)

    # Storage
    storage_key = Column(String(1024), nullable=False, unique=True)
    mime_type = Column(String(100), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    sha256 = Column(String(64), nullable=True)

    # Analysis state
    status = Column(Enum(ContractStatus), default=ContractStatus.PROCESSING, nullable=False)
    analysis_results = Column(JSONB, nullable=True)
    analysis_error = Column(Text, nullable=True)
    analysis_attempts = Column(Integer, default=0, nullable=False)

    # Derived from analysis_results
    title = Column(String(512), nullable=True)
    counterparty = Column(String(512), nullable=True)
    contract_type = Column(String(128), nullable=True)
    risk_level = Column(String(16), nullable=True)
    value = Column(String(256), nullable=True)
    effective_date = Column(String(32), nullable=True)
    expiry_date = Column(String(32), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_contract_org_created", "organization_id", "created_at"),
        Index("ix_contract_status_updated", "status", "updated_at"),
    )

    organization = relationship("Organization", back_populates="contracts")
    uploaded_by = relationship("User")
