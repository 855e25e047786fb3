"""
Lead persistence helpers — tenant-scoped reads and writes used by the sync.

Every query filters by (agency_id, source). Writes commit per call; there is
no transaction spanning a whole sync pass.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func

from leadsync.models.lead import Lead

logger = logging.getLogger('services.leads')

# Fields a sync may never overwrite on an existing lead.
LOCAL_ONLY_FIELDS = frozenset({'assigned_seller_id', 'notes'})


class LeadStore:
    """Repository over a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def _scoped(self, agency_id: str, source: str):
        return self.session.query(Lead).filter(
            Lead.agency_id == agency_id,
            Lead.source == source,
        )

    def find_by_external_id(self, agency_id: str, source: str, external_id: str) -> Optional[Lead]:
        return self._scoped(agency_id, source).filter(Lead.external_id == external_id).first()

    def create(self, fields: Dict[str, Any]) -> Lead:
        lead = Lead(**fields)
        self.session.add(lead)
        self._commit()
        return lead

    def update(self, lead: Lead, fields: Dict[str, Any]) -> Lead:
        for key, value in fields.items():
            if key in LOCAL_ONLY_FIELDS:
                continue
            setattr(lead, key, value)
        lead.updated_at = datetime.now(timezone.utc)
        self._commit()
        return lead

    def upsert(self, agency_id: str, source: str, external_id: str,
               fields: Dict[str, Any], create_fields: Dict[str, Any] = None):
        """
        Create or update the lead for an external id.

        create_fields are applied only when the lead is new (e.g. the
        auto-assigned seller). Returns (lead, created).
        """
        existing = self.find_by_external_id(agency_id, source, external_id)
        if existing is not None:
            return self.update(existing, fields), False

        values = {'agency_id': agency_id, 'source': source, 'external_id': external_id}
        values.update(create_fields or {})
        values.update(fields)
        return self.create(values), True

    def delete_by_external_id(self, agency_id: str, source: str, external_id: str) -> int:
        count = self._scoped(agency_id, source).filter(
            Lead.external_id == external_id,
        ).delete(synchronize_session=False)
        self._commit()
        return count

    def delete_by_list(self, agency_id: str, source: str, list_id: str) -> int:
        count = self._scoped(agency_id, source).filter(
            Lead.trello_list_id == list_id,
        ).delete(synchronize_session=False)
        self._commit()
        return count

    def delete_not_in_lists(self, agency_id: str, source: str, list_ids: Iterable[str]) -> int:
        """Delete leads whose cached list id is not among the given open lists."""
        keep = set(list_ids)
        rows = self._scoped(agency_id, source).filter(
            Lead.trello_list_id.isnot(None),
        ).with_entities(Lead.id, Lead.trello_list_id).all()
        orphan_ids = [row.id for row in rows if row.trello_list_id not in keep]
        return self._delete_ids(orphan_ids)

    def delete_not_in_cards(self, agency_id: str, source: str, card_ids: Iterable[str]) -> int:
        """Delete leads whose external id is not among the given card ids."""
        keep = set(card_ids)
        rows = self._scoped(agency_id, source).filter(
            Lead.external_id.isnot(None),
        ).with_entities(Lead.id, Lead.external_id).all()
        orphan_ids = [row.id for row in rows if row.external_id not in keep]
        return self._delete_ids(orphan_ids)

    def count_by_list(self, agency_id: str, source: str) -> Dict[str, int]:
        rows = self._scoped(agency_id, source).filter(
            Lead.trello_list_id.isnot(None),
        ).with_entities(Lead.trello_list_id, func.count(Lead.id)).group_by(Lead.trello_list_id).all()
        return {list_id: count for list_id, count in rows}

    def _delete_ids(self, ids) -> int:
        if not ids:
            return 0
        count = self.session.query(Lead).filter(Lead.id.in_(ids)).delete(synchronize_session=False)
        self._commit()
        return count

    def _commit(self):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error("Lead write failed, rolled back", exc_info=True)
            raise
