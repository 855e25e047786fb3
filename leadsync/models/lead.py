"""
Lead model — one row per sales opportunity, scoped to an agency.

Externally sourced leads are deduplicated by (agency_id, source, external_id).
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import validates
from sqlalchemy.sql import func

from leadsync.config import DEFAULT_STATUS, DEFAULT_REGION, LEAD_SOURCES
from leadsync.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(Text, nullable=False, index=True)
    source = Column(Text, nullable=False, default='Other')
    external_id = Column(Text, nullable=True)                   # Trello card id
    status = Column(Text, nullable=False, default=DEFAULT_STATUS)
    region = Column(Text, nullable=False, default=DEFAULT_REGION)
    destination = Column(Text, default='')
    contact_name = Column(Text, default='')
    contact_phone = Column(Text, default='')
    contact_email = Column(Text, nullable=True)
    contact_instagram = Column(Text, nullable=True)
    trello_url = Column(Text, nullable=True)
    trello_list_id = Column(Text, nullable=True)
    trello_list_name = Column(Text, nullable=True)              # cached for the migration kanban
    trello_full_data = Column(JSON, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    assigned_seller_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('agency_id', 'source', 'external_id', name='uq_lead_agency_source_external'),
        Index('ix_leads_agency_source_list', 'agency_id', 'source', 'trello_list_id'),
    )

    @validates('source')
    def _validate_source(self, key, value):
        if value not in LEAD_SOURCES:
            raise ValueError(f"Unknown lead source: {value}")
        return value

    def to_dict(self):
        return {
            'id': self.id,
            'agency_id': self.agency_id,
            'source': self.source,
            'external_id': self.external_id,
            'status': self.status,
            'region': self.region,
            'destination': self.destination,
            'contact_name': self.contact_name,
            'contact_phone': self.contact_phone,
            'contact_email': self.contact_email,
            'contact_instagram': self.contact_instagram,
            'trello_url': self.trello_url,
            'trello_list_id': self.trello_list_id,
            'trello_list_name': self.trello_list_name,
            'last_activity_at': self.last_activity_at.isoformat() if self.last_activity_at else None,
            'assigned_seller_id': self.assigned_seller_id,
            'notes': self.notes,
        }
