"""
Sync checkpoint store — last successful sync timestamp per agency.

Backed by settings_trello.last_sync_at. The checkpoint only ever moves forward.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from leadsync.models.trello_settings import TrelloSettings

logger = logging.getLogger('sync.checkpoint')


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on read; stored values are always UTC.
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class CheckpointStore:

    def __init__(self, session):
        self.session = session

    def get(self, agency_id: str) -> Optional[datetime]:
        settings = self.session.get(TrelloSettings, agency_id)
        if settings is None:
            return None
        return _aware(settings.last_sync_at)

    def set(self, agency_id: str, timestamp: datetime) -> bool:
        """Advance the checkpoint; returns False when it would move backward."""
        settings = self.session.get(TrelloSettings, agency_id)
        if settings is None:
            logger.warning("No Trello settings for agency %s — checkpoint not written", agency_id)
            return False

        timestamp = _aware(timestamp)
        current = _aware(settings.last_sync_at)
        if current is not None and timestamp <= current:
            logger.info("Checkpoint for %s left at %s (candidate %s is not newer)",
                        agency_id, current.isoformat(), timestamp.isoformat())
            return False

        settings.last_sync_at = timestamp
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("Checkpoint for %s advanced to %s", agency_id, timestamp.isoformat())
        return True
