"""
SyncRun model — one row per Trello reconciliation pass, for operator review.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime
from sqlalchemy.sql import func

from leadsync.database import Base


class SyncRun(Base):
    __tablename__ = 'sync_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default='running')
    incremental = Column(Boolean, default=False)
    total = Column(Integer, default=0)
    created = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    deleted = Column(Integer, default=0)
    orphaned_deleted = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    rate_limited = Column(Integer, default=0)
    total_cards = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'agency_id': self.agency_id,
            'status': self.status,
            'incremental': self.incremental,
            'total': self.total,
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'orphanedDeleted': self.orphaned_deleted,
            'errors': self.errors,
            'rateLimited': self.rate_limited,
            'totalCards': self.total_cards,
            'error_message': self.error_message,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
