"""
Database models for CRM tenants (companies and their locations).
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from contactsync.models.base import Base


class Company(Base):
    """Agency-level CRM account. The id is the CRM company id."""
    __tablename__ = "company"

    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    locations = relationship("Location", back_populates="company")


class Location(Base):
    """Sub-account that owns contacts, custom fields and tags. The id is the CRM location id."""
    __tablename__ = "location"

    name = Column(String, nullable=True)
    company_id = Column(String, ForeignKey("company.id"), nullable=True, index=True)

    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    company = relationship("Company", back_populates="locations")
