"""
SQLAlchemy Models for Database
==============================

Schema for the case store:
- Users (identity provider accounts)
- Cases, owned by exactly one user, with litigation workflow fields
- Activity log (written by the case-created trigger)
- Token blacklist (revoked JWTs)

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, Enum, Index, JSON
)
from sqlalchemy.orm import declarative_base

from ..schemas import CaseStatus

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# IDENTITY
# =============================================================================

class User(Base):
    """Attorney account"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False, default="")
    password_hash = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)


# =============================================================================
# CASES
# =============================================================================

class Case(Base):
    """Criminal defense case"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False)
    case_number = Column(String(100), nullable=False, default="")
    client_name = Column(String(255), nullable=False, default="")
    current_summary = Column(Text, nullable=False, default="")
    case_date = Column(DateTime, nullable=True)
    status = Column(Enum(CaseStatus), default=CaseStatus.OPEN, nullable=False)

    # Soft delete
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    # Permissions
    is_primary = Column(Boolean, default=True, nullable=False)
    can_write = Column(Boolean, default=True, nullable=False)
    can_export = Column(Boolean, default=True, nullable=False)

    # first_name/last_name/email/phone/address/statement/objectives
    client = Column(JSON, default=dict)

    # Initial Consultation
    charges_explanation = Column(Text, default="")
    potential_outcomes = Column(Text, default="")
    timeline_estimate = Column(Text, default="")
    defense_strategy_steps = Column(Text, default="")

    # Case Evaluation
    evidence_review = Column(Text, default="")
    case_strengths = Column(Text, default="")
    case_weaknesses = Column(Text, default="")
    expert_consultation = Column(Text, default="")

    # Legal Research
    relevant_laws = Column(Text, default="")
    case_precedents = Column(Text, default="")
    legal_strategy = Column(Text, default="")

    # Pre-Trial Preparation
    motion_filings = Column(Text, default="")
    discovery_process = Column(Text, default="")
    witness_preparation = Column(Text, default="")

    # Negotiation
    negotiation_strategy = Column(Text, default="")
    prosecution_communication = Column(Text, default="")
    client_consultation = Column(Text, default="")

    # Trial Preparation
    defense_strategy = Column(Text, default="")
    mock_trial_notes = Column(Text, default="")
    exhibit_preparation = Column(Text, default="")

    # During Trial
    opening_statement = Column(Text, default="")
    cross_examination = Column(Text, default="")
    defense_presentation = Column(Text, default="")
    closing_argument = Column(Text, default="")

    # Post-Trial
    verdict_and_sentencing = Column(Text, default="")
    appeals_planning = Column(Text, default="")
    post_trial_motions = Column(Text, default="")

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_case_owner_listing", "user_id", "is_deleted", "updated_at"),
    )


# =============================================================================
# AUDIT
# =============================================================================

class ActivityLog(Base):
    """Append-only audit entries"""
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    action = Column(String(50), nullable=False)
    case_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_activity_case", "case_id", "timestamp"),
    )


class TokenBlacklist(Base):
    """Revoked JWTs (durable copy of the Redis blacklist)"""
    __tablename__ = "token_blacklist"

    jti = Column(String(64), primary_key=True)
    token_type = Column(String(20), default="access")
    user_id = Column(String(36), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
