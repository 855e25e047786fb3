"""
TrelloSettings model — per-agency board credentials, list mapping and the
last-sync checkpoint.
"""
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from sqlalchemy import Column, Text, DateTime, JSON
from sqlalchemy.sql import func

from leadsync.database import Base


@dataclass(frozen=True)
class TenantConfig:
    """Immutable view of an agency's Trello settings, taken once per sync pass."""
    agency_id: str
    api_key: str
    token: str
    board_id: str
    list_status_mapping: Mapping[str, str] = field(default_factory=dict)
    list_region_mapping: Mapping[str, str] = field(default_factory=dict)
    last_sync_at: Optional[datetime] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.token and self.board_id)


class TrelloSettings(Base):
    __tablename__ = 'settings_trello'

    agency_id = Column(Text, primary_key=True)
    trello_api_key = Column(Text, nullable=True)
    trello_token = Column(Text, nullable=True)
    board_id = Column(Text, nullable=True, index=True)
    list_status_mapping = Column(JSON, default=dict)   # list id → lead status
    list_region_mapping = Column(JSON, default=dict)   # list id → lead region
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def snapshot(self) -> TenantConfig:
        return TenantConfig(
            agency_id=self.agency_id,
            api_key=self.trello_api_key or '',
            token=self.trello_token or '',
            board_id=self.board_id or '',
            list_status_mapping=MappingProxyType(dict(self.list_status_mapping or {})),
            list_region_mapping=MappingProxyType(dict(self.list_region_mapping or {})),
            last_sync_at=self.last_sync_at,
        )
