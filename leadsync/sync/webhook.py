"""
Trello webhook processing — applies one board action to the agency's leads.

Card actions re-fetch the card and upsert it the same way a sync pass does;
archive and delete actions remove leads directly without calling Trello.
The registration helpers point Trello at our receiver for an agency's board.
"""
import base64
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

from leadsync.config import TRELLO_SOURCE
from leadsync.models.trello_settings import TrelloSettings
from leadsync.services.leads import LeadStore
from leadsync.services.trello import TrelloClient, TrelloError
from leadsync.sync.card_fetcher import fetch_card
from leadsync.sync.card_parser import card_list_id
from leadsync.sync.engine import load_sellers, sync_card_to_lead
from leadsync.sync.list_mapping import resolve_list_mapping, persist_list_mapping

logger = logging.getLogger('sync.webhook')

# Actions that re-fetch the card and upsert its lead.
CARD_UPSERT_ACTIONS = {
    'createCard',
    'addCardToBoard',
    'copyCard',
    'moveCardToBoard',
    'updateCard',
    'moveCardFromList',
    'moveCardToList',
    'addMemberToCard',
    'removeMemberFromCard',
    'addAttachmentToCard',
    'addLabelToCard',
    'removeLabelFromCard',
    'updateCheckItemStateOnCard',
    'addChecklistToCard',
    'removeChecklistFromCard',
}

# Actions meaning the card is gone from this board.
CARD_REMOVAL_ACTIONS = {'deleteCard', 'moveCardFromBoard'}


def compute_signature(body: bytes, callback_url: str, secret: str) -> str:
    """base64(HMAC-SHA1(secret, body + callback URL)), as sent in X-Trello-Webhook."""
    if isinstance(body, str):
        body = body.encode('utf-8')
    digest = hmac.new(secret.encode('utf-8'), body + callback_url.encode('utf-8'), hashlib.sha1).digest()
    return base64.b64encode(digest).decode('ascii')


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str], callback_url: str) -> bool:
    """True when no secret is configured or the signature matches."""
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body, callback_url, secret), signature)


def extract_board_id(payload: Dict[str, Any]) -> Optional[str]:
    action = payload.get('action') or {}
    data = action.get('data') or {}
    model = payload.get('model') or {}
    return (
        model.get('idBoard')
        or (data.get('board') or {}).get('id')
        or (data.get('list') or {}).get('idBoard')
        or (data.get('card') or {}).get('idBoard')
        or (model.get('id') if model.get('type') == 'board' else None)
    )


def extract_card_id(action: Dict[str, Any]) -> Optional[str]:
    data = action.get('data') or {}
    return (
        (data.get('card') or {}).get('id')
        or data.get('cardId')
        or (data.get('old') or {}).get('id')
    )


def find_settings_for_board(session, board_id: Optional[str]) -> Optional[TrelloSettings]:
    if not board_id:
        return None
    return session.query(TrelloSettings).filter(TrelloSettings.board_id == board_id).first()


def process_webhook(session, payload: Dict[str, Any], client_factory=TrelloClient,
                    sleep=time.sleep, source: str = TRELLO_SOURCE) -> Dict[str, Any]:
    """
    Apply one webhook notification. Returns a JSON-safe outcome dict.

    Never raises for per-card problems; the caller always answers 200 so
    Trello keeps the webhook enabled.
    """
    action = payload.get('action') or {}
    action_type = action.get('type') or ''
    data = action.get('data') or {}

    board_id = extract_board_id(payload)
    settings = find_settings_for_board(session, board_id)
    if settings is None:
        logger.warning("Webhook for unknown board %s (action %s) — skipped", board_id, action_type)
        return {'received': True, 'skipped': True, 'reason': 'Unknown board'}

    config = settings.snapshot()
    store = LeadStore(session)
    agency_id = config.agency_id

    if action_type == 'updateList':
        trello_list = data.get('list') or {}
        if trello_list.get('closed') and trello_list.get('id'):
            removed = store.delete_by_list(agency_id, source, trello_list['id'])
            logger.info("List %s archived — %d leads deleted for agency %s", trello_list['id'], removed, agency_id)
            return {'received': True, 'action': 'list_archived', 'deleted': removed}
        return {'received': True, 'skipped': True, 'reason': 'List change ignored'}

    card_id = extract_card_id(action)
    if not card_id or action_type not in CARD_UPSERT_ACTIONS | CARD_REMOVAL_ACTIONS:
        return {'received': True, 'skipped': True, 'reason': 'Not a card action'}

    if action_type in CARD_REMOVAL_ACTIONS or (action_type == 'updateCard' and (data.get('card') or {}).get('closed')):
        removed = store.delete_by_external_id(agency_id, source, card_id)
        logger.info("Card %s removed (%s): %d leads deleted for agency %s", card_id, action_type, removed, agency_id)
        return {'received': True, 'action': 'deleted', 'deleted': removed}

    if not config.has_credentials:
        return {'received': True, 'skipped': True, 'reason': 'Trello credentials incomplete'}

    client = client_factory(config.api_key, config.token)
    result = fetch_card(client, card_id, sleep=sleep)
    if result.error is not None:
        logger.error("Webhook fetch failed for card %s: %s", card_id, result.error)
        return {'received': True, 'error': str(result.error)}

    if result.not_found or result.card.get('closed'):
        removed = store.delete_by_external_id(agency_id, source, card_id)
        return {'received': True, 'action': 'deleted', 'deleted': removed}

    card = result.card
    card_board = card.get('idBoard')
    if card_board and card_board not in (config.board_id, board_id):
        logger.warning("Card %s now belongs to board %s, not %s; upsert skipped", card_id, card_board, config.board_id)
        return {'received': True, 'skipped': True, 'reason': 'Card on another board'}

    list_id = card_list_id(card)
    if not list_id:
        return {'received': True, 'skipped': True, 'reason': 'Card without a list'}

    card_list = card.get('list') or {'id': list_id, 'name': ''}
    mapping = resolve_list_mapping(config.list_status_mapping, config.list_region_mapping, [card_list])
    if mapping.changed:
        try:
            persist_list_mapping(session, agency_id, mapping)
        except Exception:
            logger.error("Failed to persist list mapping for agency %s", agency_id, exc_info=True)

    lead, created = sync_card_to_lead(
        store, agency_id, card, mapping.status_mapping, mapping.region_mapping,
        list_names={list_id: card_list.get('name', '')},
        sellers=load_sellers(session, agency_id),
        source=source,
    )
    logger.info("Webhook %s: lead %s %s from card %s", action_type, lead.id,
                'created' if created else 'updated', card_id)
    return {'received': True, 'action': 'created' if created else 'updated', 'leadId': lead.id}


# ── Registration ─────────────────────────────────────────────────────────────

WEBHOOK_PATH = '/api/trello/webhook'


def validate_callback_url(url: str) -> Optional[str]:
    """Error message for an unusable callback URL, None when it is fine."""
    if not url:
        return 'A callback URL is required (set TRELLO_WEBHOOK_CALLBACK_URL or pass webhook_url)'
    if not url.startswith('https://'):
        return 'The webhook URL must use HTTPS'
    if not url.rstrip('/').endswith(WEBHOOK_PATH):
        return f'The webhook URL must end in {WEBHOOK_PATH}'
    return None


def _board_ids(client, board_id: str):
    """The configured board id plus its full id when Trello can resolve it."""
    ids = {board_id}
    try:
        full_id = client.get_board(board_id).get('id')
    except TrelloError as e:
        logger.warning("Could not resolve full id for board %s: %s", board_id, e)
        return ids, board_id
    if full_id:
        ids.add(full_id)
    return ids, full_id or board_id


def list_board_webhooks(client, board_id: str):
    """Webhooks under the agency's token that watch its board."""
    ids, _ = _board_ids(client, board_id)
    return [hook for hook in client.list_webhooks() if hook.get('idModel') in ids]


def register_board_webhook(client, board_id: str, callback_url: str) -> Dict[str, Any]:
    """
    Point Trello at our receiver for one board.

    Hooks already watching the board with the same callback are deleted first
    so re-registering never leaves duplicates. Hooks on other boards are
    left alone even when they share the callback URL.
    """
    ids, id_model = _board_ids(client, board_id)

    for hook in client.list_webhooks():
        if hook.get('idModel') in ids and hook.get('callbackURL') == callback_url:
            try:
                client.delete_webhook(hook['id'])
                logger.info("Removed existing webhook %s for board %s", hook['id'], board_id)
            except TrelloError as e:
                logger.warning("Could not remove webhook %s: %s", hook.get('id'), e)

    hook = client.create_webhook(callback_url, id_model, description=f'leadsync - board {id_model}')
    logger.info("Registered webhook %s for board %s -> %s", hook.get('id'), id_model, callback_url)
    return {'id': hook.get('id'), 'url': callback_url, 'idModel': id_model, 'active': hook.get('active')}
