"""
SyncRun persistence — history rows for each pass.

All writes are wrapped in try/except so a sync never blocks on history errors.
"""
import logging
from datetime import datetime, timezone

from leadsync.config import SYNC_RUN_STATUSES
from leadsync.models.sync_run import SyncRun

logger = logging.getLogger('services.sync_runs')


def start_sync_run(session, agency_id, incremental=False):
    try:
        run = SyncRun(agency_id=agency_id, status='running', incremental=incremental,
                      started_at=datetime.now(timezone.utc))
        session.add(run)
        session.commit()
        return run
    except Exception:
        session.rollback()
        logger.error("Failed to record sync start for agency %s", agency_id, exc_info=True)
        return None


def finish_sync_run(session, run, summary=None, error=None):
    if run is None:
        return
    try:
        run.status = 'failed' if error is not None else 'completed'
        if summary is not None:
            run.incremental = summary.incremental
            run.total = summary.total
            run.created = summary.created
            run.updated = summary.updated
            run.deleted = summary.deleted
            run.orphaned_deleted = summary.orphaned_deleted
            run.errors = summary.errors
            run.rate_limited = summary.rate_limited
            run.total_cards = summary.total_cards
        if error is not None:
            run.error_message = str(error)[:1000]
        run.finished_at = datetime.now(timezone.utc)
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to record sync result for agency %s", run.agency_id, exc_info=True)


def list_sync_runs(session, agency_id=None, limit=20, status=None):
    if status and status not in SYNC_RUN_STATUSES:
        raise ValueError(f"Unknown sync run status: {status}")
    query = session.query(SyncRun)
    if agency_id:
        query = query.filter(SyncRun.agency_id == agency_id)
    if status:
        query = query.filter(SyncRun.status == status)
    return query.order_by(SyncRun.id.desc()).limit(limit).all()
