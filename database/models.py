"""
SQLAlchemy ORM models for users, organizations and their integrations.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

ADMIN_ROLES = ("org_admin", "super_admin")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    users = relationship("User", back_populates="organization")


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(String(32), nullable=False, default="member")
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    organization = relationship("Organization", back_populates="users")

    @property
    def effective_organization_id(self) -> uuid.UUID:
        """Individual users without an organization act as their own org."""
        return self.organization_id or self.id

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class OrganizationIntegration(Base):
    """
    One provider connection for one organization.

    ``configuration`` is either a map of ``user_id -> token record`` (user-level
    integration types such as ``gmail_user``) or the provider credentials plus
    org-wide tokens (org-level types such as ``salesforce``).
    """

    __tablename__ = "organization_integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "integration_type", name="uq_org_integration_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # no FK: individual users store their own id here
    organization_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    integration_type = Column(String(64), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=False)
    configuration = Column(JSONType, nullable=False, default=dict)
    enabled_at = Column(DateTime(timezone=True))
    enabled_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    activity_type = Column(String(64), nullable=False)
    description = Column(Text)
    details = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
