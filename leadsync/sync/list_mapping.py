"""
List mapping resolver — Trello list id → lead status (and region).

New lists are classified by ordered substring rules on the lower-cased list
name. Existing entries are never reclassified, so operator corrections
survive every future sync.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Tuple

from leadsync.config import DEFAULT_STATUS

logger = logging.getLogger('sync.list_mapping')

Predicate = Callable[[str], bool]


def contains_any(*words: str) -> Predicate:
    """Predicate: the lower-cased name contains any of the words."""
    def _predicate(name: str) -> bool:
        return any(word in name for word in words)
    return _predicate


CLASSIFICATION_RULES: List[Tuple[Predicate, str]] = [
    (contains_any('nuevo', 'new', 'pendiente'), 'NEW'),
    (contains_any('progreso', 'progress', 'trabajando'), 'IN_PROGRESS'),
    (contains_any('cotizado', 'quoted', 'presupuesto'), 'QUOTED'),
    (contains_any('ganado', 'won', 'cerrado'), 'WON'),
    (contains_any('perdido', 'lost', 'cancelado'), 'LOST'),
]


def classify_list_name(name: str, rules=CLASSIFICATION_RULES, default: str = DEFAULT_STATUS) -> str:
    """Return the status of the first rule matching the list name."""
    lowered = (name or '').lower()
    for predicate, status in rules:
        if predicate(lowered):
            return status
    return default


@dataclass(frozen=True)
class MappingResult:
    status_mapping: Dict[str, str]
    region_mapping: Dict[str, str]
    added: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added)


def resolve_list_mapping(status_mapping: Mapping[str, str], region_mapping: Mapping[str, str],
                         lists: Iterable[Dict]) -> MappingResult:
    """
    Add a status entry for every open list not yet mapped.

    Region entries are carried over untouched; heuristics never set a region.
    """
    statuses = dict(status_mapping or {})
    regions = dict(region_mapping or {})
    added = []

    for trello_list in lists:
        list_id = trello_list.get('id')
        if not list_id or list_id in statuses:
            continue
        statuses[list_id] = classify_list_name(trello_list.get('name', ''))
        added.append(list_id)
        logger.info("Mapped new list '%s' (%s) → %s", trello_list.get('name', ''), list_id, statuses[list_id])

    return MappingResult(status_mapping=statuses, region_mapping=regions, added=added)


def persist_list_mapping(session, agency_id: str, result: MappingResult) -> bool:
    """Write the mapping back to the agency settings, only when entries were added."""
    if not result.changed:
        return False

    from leadsync.models.trello_settings import TrelloSettings

    settings = session.get(TrelloSettings, agency_id)
    if settings is None:
        return False
    # Merge over the stored mapping so concurrent operator edits are not lost.
    stored = dict(settings.list_status_mapping or {})
    for list_id in result.added:
        stored.setdefault(list_id, result.status_mapping[list_id])
    settings.list_status_mapping = stored
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("List mapping updated for agency %s (%d new lists)", agency_id, len(result.added))
    return True
