"""
SQLAlchemy models for the service taxonomy.

This module defines the four-level service hierarchy
(sector -> category -> subcategory -> job) using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

import re
import unicodedata

from sqlalchemy import (
    Boolean, Column, Integer, String, Text, Numeric, TIMESTAMP,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

NAME_MAX_LENGTH = 255

_WHITESPACE_RE = re.compile(r'\s+')


def normalize_name(name: str) -> str:
    """
    Normalize a node name for business-key comparison.

    NFKC-normalizes, trims, collapses internal whitespace and casefolds,
    so "  Brake   Pads" and "brake pads" share a key.
    """
    if name is None:
        return ''
    value = unicodedata.normalize('NFKC', str(name))
    return _WHITESPACE_RE.sub(' ', value).strip().casefold()


class Sector(Base):
    """Root of the service hierarchy (e.g. Automotive, Marine)."""

    __tablename__ = 'service_sectors'
    __table_args__ = (
        UniqueConstraint('normalized_name', name='uq_service_sectors_name'),
        Index('idx_service_sectors_position', 'position'),
        {'comment': 'Top-level service sectors'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False,
        comment='Display name'
    )
    normalized_name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False,
        comment='Business key: normalized name'
    )
    description = Column(
        Text,
        server_default='',
        nullable=False
    )
    position = Column(
        Integer,
        server_default='0',
        nullable=False,
        comment='Display ordering'
    )
    is_active = Column(
        Boolean,
        server_default=text('true'),
        nullable=False
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    categories = relationship('Category', back_populates='sector')

    def __repr__(self):
        return f"<Sector(id={self.id}, name='{self.name}')>"


class Category(Base):
    """Main category inside a sector; one per imported batch by default."""

    __tablename__ = 'service_categories'
    __table_args__ = (
        UniqueConstraint('sector_id', 'normalized_name', name='uq_service_categories_sector_name'),
        Index('idx_service_categories_sector', 'sector_id'),
        {'comment': 'Service categories scoped to a sector'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    normalized_name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    description = Column(
        Text,
        server_default='',
        nullable=False
    )
    position = Column(
        Integer,
        server_default='0',
        nullable=False
    )
    sector_id = Column(
        Integer,
        ForeignKey('service_sectors.id'),
        nullable=False,
        comment='Owning sector'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    sector = relationship('Sector', back_populates='categories')
    subcategories = relationship('Subcategory', back_populates='category')

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}', sector_id={self.sector_id})>"


class Subcategory(Base):
    """Subcategory grouping related service jobs."""

    __tablename__ = 'service_subcategories'
    __table_args__ = (
        UniqueConstraint('category_id', 'normalized_name', name='uq_service_subcategories_category_name'),
        Index('idx_service_subcategories_category', 'category_id'),
        {'comment': 'Service subcategories scoped to a category'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    normalized_name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    description = Column(
        Text,
        server_default='',
        nullable=False
    )
    category_id = Column(
        Integer,
        ForeignKey('service_categories.id'),
        nullable=False,
        comment='Owning category'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    category = relationship('Category', back_populates='subcategories')
    jobs = relationship('ServiceJob', back_populates='subcategory')

    def __repr__(self):
        return f"<Subcategory(id={self.id}, name='{self.name}', category_id={self.category_id})>"


class ServiceJob(Base):
    """A priced service line item."""

    __tablename__ = 'service_jobs'
    __table_args__ = (
        UniqueConstraint('subcategory_id', 'normalized_name', name='uq_service_jobs_subcategory_name'),
        CheckConstraint('estimated_time >= 0', name='service_jobs_estimated_time_check'),
        CheckConstraint('price >= 0', name='service_jobs_price_check'),
        Index('idx_service_jobs_subcategory', 'subcategory_id'),
        {'comment': 'Service line items with time and price estimates'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    normalized_name = Column(
        String(NAME_MAX_LENGTH),
        nullable=False
    )
    description = Column(
        Text,
        server_default='',
        nullable=False
    )
    estimated_time = Column(
        Numeric(precision=10, scale=2),
        server_default='0',
        nullable=False,
        comment='Estimated duration in minutes'
    )
    price = Column(
        Numeric(precision=12, scale=2),
        server_default='0',
        nullable=False,
        comment='Price in catalog currency'
    )
    subcategory_id = Column(
        Integer,
        ForeignKey('service_subcategories.id'),
        nullable=False,
        comment='Owning subcategory'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    subcategory = relationship('Subcategory', back_populates='jobs')

    def __repr__(self):
        return f"<ServiceJob(id={self.id}, name='{self.name}', subcategory_id={self.subcategory_id})>"
