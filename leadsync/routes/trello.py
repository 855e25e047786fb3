"""
Trello routes — sync trigger, run history, list mapping, credential check.
"""
import logging
import traceback
from flask import Blueprint, request, jsonify

from leadsync.config import IS_PRODUCTION, LEAD_STATUSES, LEAD_REGIONS
from leadsync.services.trello import TrelloClient, TrelloError, TrelloTransportError
from leadsync.sync.lock import SyncAlreadyRunningError
from leadsync.sync.service import SyncConfigurationError, run_sync

logger = logging.getLogger('routes.trello')

bp = Blueprint('trello', __name__)

VALIDATION_MESSAGES = {
    401: 'Invalid API key or token',
    404: 'Board not found or not accessible with these credentials',
    429: 'Trello rate limit reached, try again in a minute',
}


def _flag(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


def _error(message, status, **extra):
    body = {'success': False, 'error': message}
    body.update(extra)
    return jsonify(body), status


# ── Sync ─────────────────────────────────────────────────────────────────────

@bp.route('/api/trello/sync', methods=['POST'])
def trigger_sync():
    """Run a sync pass for an agency, inline or on the RQ queue."""
    data = request.get_json(silent=True) or {}
    agency_id = data.get('agency_id') or data.get('agencyId')
    force_full_sync = _flag(data.get('force_full_sync', data.get('forceFullSync', False)))

    if not agency_id:
        return _error('agency_id is required', 400)

    if _flag(data.get('background')):
        from leadsync.sync.jobs import enqueue_sync
        job = enqueue_sync(agency_id, force_full_sync=force_full_sync)
        return jsonify({'success': True, 'queued': True, 'jobId': job.id}), 202

    try:
        summary = run_sync(agency_id, force_full_sync=force_full_sync)
        return jsonify({'success': True, 'summary': summary.to_dict()})

    except SyncConfigurationError as e:
        return _error(str(e), 400)
    except SyncAlreadyRunningError as e:
        return _error(str(e), 409)
    except TrelloTransportError as e:
        if e.timeout:
            return _error('Trello did not respond in time, try again later', 504, timeout=True)
        return _error(f'Trello request failed: {e}', 502)
    except TrelloError as e:
        return _error(f'Trello request failed: {e}', 502)
    except Exception as e:
        logger.error("Sync request failed for agency %s", agency_id, exc_info=True)
        if IS_PRODUCTION:
            return _error('Internal error while syncing', 500)
        return _error(f"Internal error while syncing: {e}", 500, details=traceback.format_exc())


@bp.route('/api/trello/sync/runs')
def list_runs():
    """Recent sync passes, newest first."""
    from leadsync.database import get_session
    from leadsync.services.sync_runs import list_sync_runs

    agency_id = request.args.get('agency_id')
    limit = request.args.get('limit', 20, type=int)
    status = request.args.get('status')
    session = get_session()
    try:
        runs = list_sync_runs(session, agency_id=agency_id, limit=limit, status=status)
        return jsonify([run.to_dict() for run in runs])
    except ValueError as e:
        return _error(str(e), 400)
    finally:
        session.close()


# ── List mapping ─────────────────────────────────────────────────────────────

@bp.route('/api/trello/mapping')
def get_mapping():
    from leadsync.database import get_session
    from leadsync.models.trello_settings import TrelloSettings

    agency_id = request.args.get('agency_id')
    if not agency_id:
        return _error('agency_id is required', 400)

    session = get_session()
    try:
        settings = session.get(TrelloSettings, agency_id)
        if settings is None:
            return _error('Agency has no Trello configuration', 404)
        return jsonify({
            'agency_id': agency_id,
            'statusMapping': settings.list_status_mapping or {},
            'regionMapping': settings.list_region_mapping or {},
        })
    finally:
        session.close()


@bp.route('/api/trello/mapping', methods=['PUT'])
def update_mapping():
    """Operator corrections; merged over the stored mapping and kept by later syncs."""
    from leadsync.database import get_session
    from leadsync.models.trello_settings import TrelloSettings

    data = request.get_json(silent=True) or {}
    agency_id = data.get('agency_id') or data.get('agencyId')
    status_updates = data.get('statusMapping') or {}
    region_updates = data.get('regionMapping') or {}

    if not agency_id:
        return _error('agency_id is required', 400)
    if not isinstance(status_updates, dict) or not isinstance(region_updates, dict):
        return _error('statusMapping and regionMapping must be objects', 400)

    bad_statuses = sorted({v for v in status_updates.values() if v not in LEAD_STATUSES})
    if bad_statuses:
        return _error(f'Unknown status: {", ".join(map(str, bad_statuses))}', 400)
    bad_regions = sorted({v for v in region_updates.values() if v not in LEAD_REGIONS})
    if bad_regions:
        return _error(f'Unknown region: {", ".join(map(str, bad_regions))}', 400)

    session = get_session()
    try:
        settings = session.get(TrelloSettings, agency_id)
        if settings is None:
            return _error('Agency has no Trello configuration', 404)

        statuses = dict(settings.list_status_mapping or {})
        statuses.update(status_updates)
        regions = dict(settings.list_region_mapping or {})
        regions.update(region_updates)
        settings.list_status_mapping = statuses
        settings.list_region_mapping = regions
        session.commit()
        logger.info("List mapping edited for agency %s (%d status, %d region entries)",
                    agency_id, len(status_updates), len(region_updates))
        return jsonify({'agency_id': agency_id, 'statusMapping': statuses, 'regionMapping': regions})
    except Exception as e:
        session.rollback()
        logger.error("Failed to update mapping for agency %s", agency_id, exc_info=True)
        return _error(str(e), 500)
    finally:
        session.close()


# ── Credential check ─────────────────────────────────────────────────────────

@bp.route('/api/trello/validate', methods=['POST'])
def validate_credentials():
    data = request.get_json(silent=True) or {}
    api_key = data.get('apiKey') or data.get('api_key')
    token = data.get('token')
    board_id = data.get('boardId') or data.get('board_id')

    if not api_key or not token:
        return jsonify({'valid': False, 'error': 'API key and token are required'}), 400

    client = TrelloClient(api_key, token)
    try:
        member = client.get_member('me')
        result = {
            'valid': True,
            'member': {
                'id': member.get('id'),
                'username': member.get('username'),
                'fullName': member.get('fullName'),
            },
        }
        if board_id:
            board = client.get_board(board_id)
            if board.get('closed'):
                return jsonify({'valid': False, 'error': 'Board is archived', 'statusCode': 400})
            lists = client.list_open_lists(board_id)
            result['board'] = {'id': board.get('id'), 'name': board.get('name'), 'url': board.get('url')}
            result['listsCount'] = len(lists)
        return jsonify(result)

    except TrelloError as e:
        status = e.status_code
        message = VALIDATION_MESSAGES.get(status) or f'Trello request failed: {e}'
        logger.info("Trello credential check failed (%s): %s", status, e)
        return jsonify({'valid': False, 'error': message, 'statusCode': status})
