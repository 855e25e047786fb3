"""
Background sync jobs on RQ, plus the scheduled all-agencies sweep.

The queue is created lazily so importing this module never touches Redis.

Scheduled use (cron, Railway/Heroku scheduler):
    leadsync-sync-all              # incremental pass for every agency, inline
    leadsync-sync-all --enqueue    # one RQ job per agency instead
    leadsync-sync-all --agency agency-1 --full
"""
import argparse
import json
import logging
import sys

from leadsync.sync.lock import SyncAlreadyRunningError

logger = logging.getLogger('sync.jobs')

JOB_TIMEOUT = 3600

_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from leadsync.extensions import redis_client
        from rq import Queue
        _queue = Queue('trello-sync', connection=redis_client)
    return _queue


def enqueue_sync(agency_id, force_full_sync=False):
    """Enqueue a sync pass; returns the RQ job."""
    job = _get_queue().enqueue(run_sync_job, agency_id, force_full_sync, job_timeout=JOB_TIMEOUT)
    logger.info("Enqueued Trello sync for agency %s (job %s, full=%s)", agency_id, job.id, force_full_sync)
    return job


def run_sync_job(agency_id, force_full_sync=False):
    """RQ entry point. Returns the summary dict so it lands in the job result."""
    from rq import get_current_job
    from leadsync.logging_config import configure_logging
    from leadsync.sync.service import run_sync

    configure_logging()
    job = get_current_job()
    context = {'agency_id': agency_id, 'job_id': job.id if job else None}
    logger.info("Sync job started for agency %s (full=%s)", agency_id, force_full_sync, extra=context)
    summary = run_sync(agency_id, force_full_sync=force_full_sync)
    logger.info("Sync job finished for agency %s: %d synced, %d errors", agency_id, summary.total, summary.errors,
                extra=context)
    return summary.to_dict()


def configured_agencies():
    from leadsync.database import get_session
    from leadsync.models.trello_settings import TrelloSettings

    session = get_session()
    try:
        return [row.agency_id for row in session.query(TrelloSettings.agency_id).all()]
    finally:
        session.close()


def sync_all_agencies(force_full_sync=False):
    """Pass for every configured agency; one failure never stops the rest."""
    from leadsync.sync.service import run_sync

    results = {}
    for agency_id in configured_agencies():
        try:
            results[agency_id] = run_sync(agency_id, force_full_sync=force_full_sync).to_dict()
        except SyncAlreadyRunningError:
            logger.info("Skipping agency %s, sync already running", agency_id)
            results[agency_id] = {'skipped': True}
        except Exception as e:
            logger.error("Scheduled sync failed for agency %s: %s", agency_id, e)
            results[agency_id] = {'error': str(e)}
    return results


def enqueue_all_agencies(force_full_sync=False):
    """One RQ job per configured agency; returns {agency_id: job_id}."""
    return {
        agency_id: enqueue_sync(agency_id, force_full_sync=force_full_sync).id
        for agency_id in configured_agencies()
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description='Reconcile Trello boards with agency leads.')
    parser.add_argument('--agency', help='Sync a single agency instead of all of them')
    parser.add_argument('--full', action='store_true', help='Force a full pass (orphan sweeps included)')
    parser.add_argument('--enqueue', action='store_true', help='Queue RQ jobs instead of syncing inline')
    args = parser.parse_args(argv)

    from leadsync.logging_config import configure_logging
    configure_logging()

    if args.enqueue:
        if args.agency:
            results = {args.agency: enqueue_sync(args.agency, force_full_sync=args.full).id}
        else:
            results = enqueue_all_agencies(force_full_sync=args.full)
    elif args.agency:
        from leadsync.sync.service import run_sync
        results = {args.agency: run_sync(args.agency, force_full_sync=args.full).to_dict()}
    else:
        results = sync_all_agencies(force_full_sync=args.full)

    print(json.dumps(results, indent=2, default=str))
    failed = [agency_id for agency_id, result in results.items() if isinstance(result, dict) and 'error' in result]
    return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
