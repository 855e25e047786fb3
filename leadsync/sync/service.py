"""
Sync entry point — loads the agency snapshot, holds the lease, runs the engine.

Used by the HTTP trigger, the RQ job and the scheduled all-agencies sweep.
"""
import logging
import time

from leadsync.config import SYNC_CONCURRENCY
from leadsync.models.trello_settings import TrelloSettings
from leadsync.services.notifications import notify_sync_complete, notify_sync_failed
from leadsync.services.sync_runs import start_sync_run, finish_sync_run
from leadsync.services.trello import TrelloClient, TrelloError
from leadsync.sync.engine import ReconciliationEngine
from leadsync.sync.lock import SyncLock

logger = logging.getLogger('sync.service')


class SyncConfigurationError(Exception):
    """The agency has no usable Trello credentials."""


def load_tenant_config(session, agency_id):
    settings = session.get(TrelloSettings, agency_id)
    if settings is None:
        raise SyncConfigurationError(f"No Trello configuration for agency {agency_id}")
    config = settings.snapshot()
    if not config.has_credentials:
        raise SyncConfigurationError(f"Trello credentials incomplete for agency {agency_id}")
    return config


def _default_lock():
    from leadsync.extensions import redis_client
    return SyncLock(redis_client)


def run_sync(agency_id, force_full_sync=False, session=None, client_factory=TrelloClient,
             lock=None, sleep=time.sleep, concurrency=SYNC_CONCURRENCY):
    """
    Run one reconciliation pass for an agency and return its SyncSummary.

    Raises SyncConfigurationError, SyncAlreadyRunningError, or the TrelloError
    that aborted the bulk listing. Nothing is written in those cases except
    the failed SyncRun row.
    """
    from leadsync.database import get_session

    owns_session = session is None
    if owns_session:
        session = get_session()
    if lock is None:
        lock = _default_lock()

    try:
        config = load_tenant_config(session, agency_id)

        with lock.hold(agency_id) as token:
            run = start_sync_run(session, agency_id, incremental=bool(not force_full_sync and config.last_sync_at))
            engine = ReconciliationEngine(
                session,
                client_factory(config.api_key, config.token),
                config,
                force_full_sync=force_full_sync,
                concurrency=concurrency,
                sleep=sleep,
                heartbeat=lambda: lock.extend(agency_id, token),
            )
            try:
                summary = engine.run()
            except TrelloError as e:
                logger.error("Sync aborted for agency %s in %s: %s", agency_id, engine.state.value, e,
                             extra={'agency_id': agency_id})
                finish_sync_run(session, run, error=e)
                notify_sync_failed(agency_id, e)
                raise
            except Exception as e:
                logger.error("Sync crashed for agency %s in %s", agency_id, engine.state.value, exc_info=True,
                             extra={'agency_id': agency_id})
                session.rollback()
                finish_sync_run(session, run, summary=engine.summary, error=e)
                notify_sync_failed(agency_id, e)
                raise

            finish_sync_run(session, run, summary=summary)
            notify_sync_complete(agency_id, summary)
            return summary
    finally:
        if owns_session:
            session.close()
