"""
Webhook routes — Trello board notifications.

HEAD is Trello's endpoint check when a webhook is registered. POST answers
200 for anything we could parse so Trello never disables the hook.
/api/trello/webhooks lists, registers and removes an agency's board hooks.
"""
import json
import logging
from flask import Blueprint, request, jsonify

from leadsync.config import TRELLO_WEBHOOK_SECRET, TRELLO_WEBHOOK_CALLBACK_URL
from leadsync.services.trello import TrelloClient, TrelloError
from leadsync.sync.service import SyncConfigurationError, load_tenant_config
from leadsync.sync.webhook import (
    process_webhook, verify_signature, validate_callback_url, list_board_webhooks, register_board_webhook,
)

logger = logging.getLogger('routes.webhook')

bp = Blueprint('webhook', __name__)


@bp.route('/api/trello/webhook', methods=['HEAD'])
def verify_webhook():
    return '', 200


@bp.route('/api/trello/webhook', methods=['POST'])
def receive_webhook():
    body = request.get_data()
    callback_url = TRELLO_WEBHOOK_CALLBACK_URL or request.base_url
    if not verify_signature(body, request.headers.get('X-Trello-Webhook'), TRELLO_WEBHOOK_SECRET, callback_url):
        logger.warning("Rejected Trello webhook with invalid signature")
        return jsonify({'error': 'Invalid signature'}), 401

    try:
        payload = json.loads(body or b'{}')
    except ValueError:
        return jsonify({'error': 'Invalid JSON'}), 400
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid JSON'}), 400

    from leadsync.database import get_session
    session = get_session()
    try:
        outcome = process_webhook(session, payload)
    except Exception as e:
        session.rollback()
        logger.error("Webhook processing failed: %s", e, exc_info=True)
        outcome = {'received': True, 'error': str(e)}
    finally:
        session.close()
    return jsonify(outcome), 200


# ── Registration ─────────────────────────────────────────────────────────────

def _agency_client(session, agency_id):
    config = load_tenant_config(session, agency_id)
    return config, TrelloClient(config.api_key, config.token)


@bp.route('/api/trello/webhooks')
def list_webhooks():
    """Webhooks currently watching the agency's board."""
    from leadsync.database import get_session

    agency_id = request.args.get('agency_id') or request.args.get('agencyId')
    if not agency_id:
        return jsonify({'error': 'agency_id is required'}), 400

    session = get_session()
    try:
        config, client = _agency_client(session, agency_id)
        return jsonify({'webhooks': list_board_webhooks(client, config.board_id)})
    except SyncConfigurationError:
        return jsonify({'webhooks': []})
    except TrelloError as e:
        logger.warning("Could not list webhooks for agency %s: %s", agency_id, e)
        return jsonify({'error': f'Trello request failed: {e}'}), 502
    finally:
        session.close()


@bp.route('/api/trello/webhooks/register', methods=['POST'])
def register_webhook():
    """Register (or re-register) the receiver for the agency's board."""
    from leadsync.database import get_session

    data = request.get_json(silent=True) or {}
    agency_id = data.get('agency_id') or data.get('agencyId')
    callback_url = data.get('webhook_url') or data.get('webhookUrl') or TRELLO_WEBHOOK_CALLBACK_URL

    if not agency_id:
        return jsonify({'error': 'agency_id is required'}), 400
    problem = validate_callback_url(callback_url)
    if problem:
        return jsonify({'error': problem}), 400

    session = get_session()
    try:
        config, client = _agency_client(session, agency_id)
        hook = register_board_webhook(client, config.board_id, callback_url)
        return jsonify({'success': True, 'webhook': hook})
    except SyncConfigurationError as e:
        return jsonify({'error': str(e)}), 400
    except TrelloError as e:
        logger.error("Webhook registration failed for agency %s: %s", agency_id, e)
        return jsonify({'error': f'Trello rejected the webhook: {e}'}), 400
    finally:
        session.close()


@bp.route('/api/trello/webhooks', methods=['DELETE'])
def delete_webhook():
    from leadsync.database import get_session

    webhook_id = request.args.get('id')
    agency_id = request.args.get('agency_id') or request.args.get('agencyId')
    if not webhook_id or not agency_id:
        return jsonify({'error': 'id and agency_id are required'}), 400

    session = get_session()
    try:
        _, client = _agency_client(session, agency_id)
        client.delete_webhook(webhook_id)
        logger.info("Deleted webhook %s for agency %s", webhook_id, agency_id)
        return jsonify({'success': True})
    except SyncConfigurationError as e:
        return jsonify({'error': str(e)}), 400
    except TrelloError as e:
        logger.warning("Could not delete webhook %s: %s", webhook_id, e)
        return jsonify({'error': f'Error deleting webhook: {e}'}), 400
    finally:
        session.close()
