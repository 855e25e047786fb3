"""
Reconciliation engine — one Trello → leads sync pass for one agency.

    IDLE → FETCHING_CARDS → FETCHING_LISTS → MAPPING_REFRESH → FILTERING
         → PER_CARD_LOOP → ORPHAN_CLEANUP (full sync only) → CHECKPOINT_UPDATE → DONE

A TrelloError while fetching cards or lists moves the pass to FAILED and
propagates before any lead is written. Every per-card failure is absorbed
into the summary counters.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from leadsync.config import (
    TRELLO_SOURCE, DEFAULT_STATUS,
    CARD_DELAY, BATCH_SIZE, BATCH_PAUSE, RATE_LIMIT_COOLDOWN,
    SYNC_CONCURRENCY, CARD_FETCH_RETRIES,
)
from leadsync.models.trello_settings import TenantConfig
from leadsync.models.user import User, SELLER_ROLES
from leadsync.services.leads import LeadStore
from leadsync.sync.card_fetcher import CardFetchResult, fetch_card
from leadsync.sync.card_parser import (
    card_list_id, card_to_lead_fields, first_member_name, match_seller, parse_activity_date,
)
from leadsync.sync.checkpoint import CheckpointStore
from leadsync.sync.list_mapping import resolve_list_mapping, persist_list_mapping

logger = logging.getLogger('sync.engine')


class SyncState(str, Enum):
    IDLE = 'idle'
    FETCHING_CARDS = 'fetching_cards'
    FETCHING_LISTS = 'fetching_lists'
    MAPPING_REFRESH = 'mapping_refresh'
    FILTERING = 'filtering'
    PER_CARD_LOOP = 'per_card_loop'
    ORPHAN_CLEANUP = 'orphan_cleanup'
    CHECKPOINT_UPDATE = 'checkpoint_update'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class SyncSummary:
    total: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    orphaned_deleted: int = 0
    errors: int = 0
    rate_limited: int = 0
    total_cards: int = 0
    incremental: bool = False
    last_sync_at: Optional[datetime] = None
    checkpoint_advanced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'orphanedDeleted': self.orphaned_deleted,
            'errors': self.errors,
            'rateLimited': self.rate_limited,
            'totalCards': self.total_cards,
            'incremental': self.incremental,
            'lastSyncAt': self.last_sync_at.isoformat() if self.last_sync_at else None,
        }


def filter_incremental(cards: List[Dict[str, Any]], since: datetime) -> List[Dict[str, Any]]:
    """Cards with activity at or after `since`; cards without a usable timestamp are kept."""
    kept = []
    for card in cards:
        activity = parse_activity_date(card.get('dateLastActivity'))
        if activity is None or activity >= since:
            kept.append(card)
    return kept


def load_sellers(session, agency_id: str) -> List[User]:
    return session.query(User).filter(
        User.agency_id == agency_id,
        User.role.in_(SELLER_ROLES),
        User.is_active.is_(True),
    ).all()


def sync_card_to_lead(store: LeadStore, agency_id: str, card: Dict[str, Any],
                      status_mapping: Mapping[str, str], region_mapping: Mapping[str, str],
                      list_names: Mapping[str, str] = None, sellers=None,
                      source: str = TRELLO_SOURCE):
    """
    Upsert the lead for one open card. Returns (lead, created).

    The seller is assigned and the description copied to notes only when the
    lead is created; afterwards both belong to the agency staff.
    """
    list_id = card_list_id(card)
    status = status_mapping.get(list_id)
    if status is None:
        logger.warning("No status mapping for list %s (card %s) — defaulting to %s", list_id, card.get('id'), DEFAULT_STATUS)
        status = DEFAULT_STATUS

    fields = card_to_lead_fields(
        card,
        status=status,
        region=region_mapping.get(list_id),
        list_name=(list_names or {}).get(list_id),
    )

    create_fields = {'notes': card.get('desc') or None}
    seller = match_seller(first_member_name(card), sellers or [])
    if seller is not None:
        create_fields['assigned_seller_id'] = seller.id

    return store.upsert(agency_id, source, card['id'], fields, create_fields=create_fields)


class ReconciliationEngine:
    """
    Runs one pass against an immutable TenantConfig snapshot.

    Card detail fetches go through a queue of `concurrency` workers (1 by
    default); lead writes always happen on the calling thread in listing order.
    """

    def __init__(self, session, client, config: TenantConfig, force_full_sync: bool = False,
                 concurrency: int = SYNC_CONCURRENCY, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = None, source: str = TRELLO_SOURCE,
                 fetch_retries: int = CARD_FETCH_RETRIES, heartbeat: Callable[[], None] = None):
        self.session = session
        self.client = client
        self.config = config
        self.force_full_sync = force_full_sync
        self.concurrency = max(1, int(concurrency or 1))
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.source = source
        self.fetch_retries = fetch_retries
        self.heartbeat = heartbeat

        self.store = LeadStore(session)
        self.checkpoints = CheckpointStore(session)
        self.state = SyncState.IDLE
        self.summary = SyncSummary()
        self._rate_lock = threading.Lock()

    # ── Helpers ──────────────────────────────────────────────────────────

    def _set_state(self, state: SyncState):
        self.state = state
        logger.debug("Agency %s sync → %s", self.config.agency_id, state.value)

    def _count_rate_limit(self):
        with self._rate_lock:
            self.summary.rate_limited += 1

    def _fetch(self, card_id: str) -> CardFetchResult:
        return fetch_card(
            self.client, card_id,
            retries=self.fetch_retries,
            sleep=self.sleep,
            on_rate_limit=self._count_rate_limit,
        )

    def _fetch_window(self, cards: List[Dict[str, Any]]) -> List[CardFetchResult]:
        if self.concurrency == 1 or len(cards) == 1:
            return [self._fetch(card['id']) for card in cards]
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            return list(pool.map(self._fetch, [card['id'] for card in cards]))

    # ── Pass ─────────────────────────────────────────────────────────────

    def run(self) -> SyncSummary:
        agency_id = self.config.agency_id
        started_at = self.clock()
        summary = self.summary

        last_sync_at = self.checkpoints.get(agency_id)
        incremental = bool(not self.force_full_sync and last_sync_at)
        summary.incremental = incremental
        summary.last_sync_at = last_sync_at if incremental else None

        logger.info("Starting %s sync for agency %s%s", 'incremental' if incremental else 'full', agency_id,
                    f" (since {last_sync_at.isoformat()})" if incremental else '')

        try:
            self._set_state(SyncState.FETCHING_CARDS)
            all_cards = self.client.list_open_cards(self.config.board_id)
            logger.info("%d open cards on board %s", len(all_cards), self.config.board_id)

            self._set_state(SyncState.FETCHING_LISTS)
            open_lists = self.client.list_open_lists(self.config.board_id)
            logger.info("%d open lists on board %s", len(open_lists), self.config.board_id)
        except Exception:
            self._set_state(SyncState.FAILED)
            raise

        self._set_state(SyncState.MAPPING_REFRESH)
        mapping = resolve_list_mapping(self.config.list_status_mapping, self.config.list_region_mapping, open_lists)
        if mapping.changed:
            try:
                persist_list_mapping(self.session, agency_id, mapping)
            except Exception:
                logger.error("Failed to persist list mapping for agency %s", agency_id, exc_info=True)
        list_names = {lst.get('id'): lst.get('name', '') for lst in open_lists}

        self._set_state(SyncState.FILTERING)
        cards = filter_incremental(all_cards, last_sync_at) if incremental else list(all_cards)
        summary.total_cards = len(cards)
        if incremental:
            logger.info("Cards to sync: %d of %d", len(cards), len(all_cards))
        self._log_cards_by_list(cards, list_names)

        self._set_state(SyncState.PER_CARD_LOOP)
        sellers = self._load_sellers()
        self._process_cards(cards, mapping.status_mapping, mapping.region_mapping, list_names, sellers)

        if not incremental:
            self._set_state(SyncState.ORPHAN_CLEANUP)
            self._sweep_orphans(open_lists, all_cards)

        self._set_state(SyncState.CHECKPOINT_UPDATE)
        if summary.total > 0 or summary.errors == 0:
            try:
                summary.checkpoint_advanced = self.checkpoints.set(agency_id, started_at)
            except Exception:
                logger.error("Failed to update checkpoint for agency %s", agency_id, exc_info=True)
        else:
            logger.warning("Every card failed for agency %s — checkpoint not advanced", agency_id)

        self._set_state(SyncState.DONE)
        logger.info(
            "Sync done for agency %s: %d synced (%d new, %d updated), %d deleted, %d orphans, %d errors, %d rate limits",
            agency_id, summary.total, summary.created, summary.updated, summary.deleted,
            summary.orphaned_deleted, summary.errors, summary.rate_limited,
        )
        return summary

    def _load_sellers(self):
        try:
            return load_sellers(self.session, self.config.agency_id)
        except Exception:
            logger.error("Could not load sellers for agency %s", self.config.agency_id, exc_info=True)
            self.session.rollback()
            return []

    def _process_cards(self, cards, status_mapping, region_mapping, list_names, sellers):
        summary = self.summary
        total = len(cards)

        for start in range(0, total, self.concurrency):
            window = cards[start:start + self.concurrency]
            results = self._fetch_window(window)

            for offset, (stub, result) in enumerate(zip(window, results)):
                index = start + offset
                if index and index % 50 == 0:
                    logger.info("Progress: %d/%d cards", index, total)
                self._apply(stub, result, status_mapping, region_mapping, list_names, sellers)

            if self.heartbeat:
                self.heartbeat()

            processed = start + len(window)
            if processed >= total:
                break
            self.sleep(CARD_DELAY)
            if processed // BATCH_SIZE > start // BATCH_SIZE:
                logger.info("Pausing %.1fs after batch of %d cards", BATCH_PAUSE, BATCH_SIZE)
                self.sleep(BATCH_PAUSE)

    def _apply(self, stub, result: CardFetchResult, status_mapping, region_mapping, list_names, sellers):
        summary = self.summary
        agency_id = self.config.agency_id
        card_id = stub['id']

        if result.error is not None:
            summary.errors += 1
            logger.error("Error fetching card %s: %s", card_id, result.error,
                         extra={'agency_id': agency_id, 'card_id': card_id})
            self._cool_down()
            return

        try:
            if result.not_found:
                self.store.delete_by_external_id(agency_id, self.source, card_id)
                summary.deleted += 1
                logger.info("Lead deleted (card no longer exists): %s", card_id)
                return

            card = result.card
            if card.get('closed'):
                self.store.delete_by_external_id(agency_id, self.source, card.get('id') or card_id)
                summary.deleted += 1
                logger.info("Lead deleted (card archived): %s", card_id)
                return

            if not card_list_id(card):
                summary.errors += 1
                logger.error("Card without a list, skipping: %s — %s", card_id, card.get('name', ''))
                return

            _, created = sync_card_to_lead(
                self.store, agency_id, card, status_mapping, region_mapping,
                list_names=list_names, sellers=sellers, source=self.source,
            )
            if created:
                summary.created += 1
            else:
                summary.updated += 1
            summary.total += 1
            if summary.total % 25 == 0:
                logger.info("Progress: %d synced (%d new, %d updated, %d errors, %d rate limits)",
                            summary.total, summary.created, summary.updated, summary.errors, summary.rate_limited)
        except Exception as e:
            summary.errors += 1
            logger.error("Error syncing card %s: %s", card_id, e, exc_info=True,
                         extra={'agency_id': agency_id, 'card_id': card_id})
            self.session.rollback()
            self._cool_down()

    def _cool_down(self):
        rate_limited = self.summary.rate_limited
        if rate_limited > 5 and rate_limited % 5 == 0:
            logger.warning("Many rate limits detected — waiting %.1fs before continuing", RATE_LIMIT_COOLDOWN)
            self.sleep(RATE_LIMIT_COOLDOWN)

    def _sweep_orphans(self, open_lists, all_cards):
        agency_id = self.config.agency_id
        summary = self.summary

        open_list_ids = {lst.get('id') for lst in open_lists if lst.get('id')}
        if open_list_ids:
            try:
                removed = self.store.delete_not_in_lists(agency_id, self.source, open_list_ids)
                summary.orphaned_deleted += removed
                if removed:
                    logger.info("%d leads deleted (lists archived or removed)", removed)
            except Exception:
                logger.error("List orphan sweep failed for agency %s", agency_id, exc_info=True)
                self.session.rollback()
        else:
            logger.warning("Board %s returned no open lists — list orphan sweep skipped", self.config.board_id)

        card_ids = {card.get('id') for card in all_cards if card.get('id')}
        try:
            removed = self.store.delete_not_in_cards(agency_id, self.source, card_ids)
            summary.orphaned_deleted += removed
            if removed:
                logger.info("%d leads deleted (cards gone from Trello)", removed)
        except Exception:
            logger.error("Card orphan sweep failed for agency %s", agency_id, exc_info=True)
            self.session.rollback()

        try:
            counts = self.store.count_by_list(agency_id, self.source)
            logger.info("Leads per list: %s", counts)
        except Exception:
            self.session.rollback()

    def _log_cards_by_list(self, cards, list_names):
        by_list: Dict[str, int] = {}
        for card in cards:
            list_id = card.get('idList') or 'unknown'
            by_list[list_id] = by_list.get(list_id, 0) + 1
        if by_list:
            logger.info("Cards per list: %s", ', '.join(
                f"{list_names.get(list_id, 'Unknown')}: {count}" for list_id, count in by_list.items()
            ))
