"""
Trello REST client — board listing, card detail with retry, credential checks.

Bulk listing calls are single-shot and time-bounded: any failure is fatal for
the sync pass. Card detail calls retry internally on 429/5xx/network errors.
"""
import logging
import time
import requests
from typing import Any, Callable, Dict, List, Optional

from leadsync.config import (
    TRELLO_API_URL, TRELLO_LIST_TIMEOUT, TRELLO_CARD_TIMEOUT,
    HTTP_RETRIES, HTTP_BASE_DELAY, RATE_LIMIT_MAX_DELAY,
)

logger = logging.getLogger('services.trello')


# ── Errors ───────────────────────────────────────────────────────────────────

class TrelloError(Exception):
    """Base class for Trello API failures."""
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class TrelloTransportError(TrelloError):
    """Network failure, timeout or non-2xx response on a bulk listing call."""
    def __init__(self, message, status_code=None, timeout=False):
        self.timeout = timeout
        super().__init__(message, status_code=status_code)


class TrelloAPIError(TrelloError):
    """Non-2xx response on a single-resource call."""


class TrelloRateLimitError(TrelloAPIError):
    """HTTP 429 that outlasted the client's own retries."""
    def __init__(self, message='Trello rate limit exceeded (429 Too Many Requests)', retry_after=None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429)


class TrelloAuthError(TrelloAPIError):
    """HTTP 401 — API key or token rejected."""
    def __init__(self, message='Trello rejected the API key or token', status_code=401):
        super().__init__(message, status_code=status_code)


class CardNotFoundError(TrelloError):
    """Explicit HTTP 404 for a card — the card was deleted at the source."""
    def __init__(self, card_id):
        self.card_id = card_id
        super().__init__(f"Trello card {card_id} not found", status_code=404)


_RATE_LIMIT_MARKERS = ('429', 'rate limit', 'too many requests')


def is_rate_limit_error(error: Exception) -> bool:
    """True for a TrelloRateLimitError or any error whose message looks like one."""
    if isinstance(error, TrelloRateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


# ── Client ───────────────────────────────────────────────────────────────────

CARD_DETAIL_PARAMS = {
    'fields': 'all',
    'members': 'true',
    'member_fields': 'fullName,username',
    'attachments': 'true',
    'attachment_fields': 'name,url,mimeType,bytes,date',
    'checklists': 'all',
    'checklist_fields': 'all',
    'customFieldItems': 'true',
    'actions': 'commentCard,updateCard,addAttachmentToCard,addChecklistToCard,addMemberToCard',
    'actions_limit': '100',
    'board': 'true',
    'board_fields': 'name,url',
    'list': 'true',
    'list_fields': 'name,pos',
}


class TrelloClient:
    """
    Thin wrapper over the Trello REST API for one set of credentials.

    Usage:
        client = TrelloClient(api_key, token)
        cards = client.list_open_cards(board_id)
        card = client.get_card(cards[0]['id'])
    """

    def __init__(self, api_key: str, token: str, base_url: str = TRELLO_API_URL,
                 session: requests.Session = None, sleep: Callable[[float], None] = time.sleep):
        self.api_key = api_key
        self.token = token
        self.base_url = base_url.rstrip('/')
        self.http = session or requests.Session()
        self.sleep = sleep

    def _params(self, extra: Dict[str, Any] = None) -> Dict[str, Any]:
        params = {'key': self.api_key, 'token': self.token}
        if extra:
            params.update(extra)
        return params

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    # ── Bulk listing (single attempt, fatal on failure) ──────────────────

    def _list(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            resp = self.http.get(self._url(path), params=self._params(params), timeout=TRELLO_LIST_TIMEOUT)
        except requests.exceptions.Timeout as e:
            raise TrelloTransportError(f"Timed out fetching {path}: {e}", timeout=True) from e
        except requests.exceptions.RequestException as e:
            raise TrelloTransportError(f"Network error fetching {path}: {e}") from e

        if not resp.ok:
            logger.error("Trello listing %s failed: %d — %s", path, resp.status_code, resp.text[:200])
            raise TrelloTransportError(
                f"Trello returned {resp.status_code} for {path}",
                status_code=resp.status_code,
            )
        return resp.json()

    def list_open_cards(self, board_id: str) -> List[Dict[str, Any]]:
        """Open cards on a board with minimal fields (id, name, dateLastActivity, idList)."""
        return self._list(
            f'boards/{board_id}/cards/open',
            {'fields': 'id,name,dateLastActivity,idList'},
        )

    def list_open_lists(self, board_id: str) -> List[Dict[str, Any]]:
        """Open lists on a board (id, name)."""
        return self._list(
            f'boards/{board_id}/lists',
            {'filter': 'open', 'fields': 'id,name'},
        )

    # ── Single resources (retried) ───────────────────────────────────────

    def _get_with_retry(self, path: str, params: Dict[str, Any], timeout: float = TRELLO_CARD_TIMEOUT,
                        retries: int = HTTP_RETRIES, base_delay: float = HTTP_BASE_DELAY,
                        on_rate_limit: Callable[[], None] = None) -> requests.Response:
        """
        GET with exponential backoff on 429, 5xx and network errors.

        4xx responses other than 429 are returned to the caller untouched.
        """
        last_error: Optional[Exception] = None

        for attempt in range(retries):
            try:
                resp = self.http.get(self._url(path), params=self._params(params), timeout=timeout)
            except requests.exceptions.RequestException as e:
                last_error = e
                if attempt < retries - 1:
                    wait = base_delay * (2 ** attempt)
                    logger.warning("Network error on %s: %s — retrying in %.1fs (%d/%d)",
                                   path, e, wait, attempt + 1, retries)
                    self.sleep(wait)
                continue

            if resp.status_code == 429:
                if on_rate_limit:
                    on_rate_limit()
                retry_after = resp.headers.get('Retry-After')
                try:
                    wait = float(retry_after) if retry_after else base_delay * (2 ** attempt)
                except ValueError:
                    wait = base_delay * (2 ** attempt)
                wait = min(wait, RATE_LIMIT_MAX_DELAY)
                last_error = TrelloRateLimitError(retry_after=wait)
                if attempt < retries - 1:
                    logger.warning("Rate limited on %s, waiting %.1fs (%d/%d)", path, wait, attempt + 1, retries)
                    self.sleep(wait)
                continue

            if resp.status_code >= 500:
                last_error = TrelloAPIError(f"Trello API error: {resp.status_code}", status_code=resp.status_code)
                if attempt < retries - 1:
                    wait = base_delay * (2 ** attempt)
                    logger.warning("Trello %d on %s, retrying in %.1fs (%d/%d)",
                                   resp.status_code, path, wait, attempt + 1, retries)
                    self.sleep(wait)
                continue

            return resp

        if isinstance(last_error, TrelloError):
            raise last_error
        raise TrelloAPIError(f"Failed to fetch {path} after {retries} attempts: {last_error}") from last_error

    def get_card(self, card_id: str, on_rate_limit: Callable[[], None] = None) -> Dict[str, Any]:
        """
        Full detail for one card.

        Raises CardNotFoundError only on an explicit 404; every other failure
        raises a TrelloAPIError subclass.
        """
        resp = self._get_with_retry(f'cards/{card_id}', CARD_DETAIL_PARAMS, on_rate_limit=on_rate_limit)

        if resp.status_code == 404:
            raise CardNotFoundError(card_id)
        if resp.status_code == 401:
            raise TrelloAuthError()
        if not resp.ok:
            logger.error("Trello API error (%d) for card %s: %s", resp.status_code, card_id, resp.text[:200])
            raise TrelloAPIError(f"Trello API error: {resp.status_code} - {resp.text[:200]}",
                                 status_code=resp.status_code)

        return normalize_card(resp.json())

    def get_member(self, member_id: str = 'me') -> Dict[str, Any]:
        resp = self._get_with_retry(f'members/{member_id}', {'fields': 'id,username,fullName,email'})
        _raise_for_status(resp, f'member {member_id}')
        return resp.json()

    def get_board(self, board_id: str) -> Dict[str, Any]:
        resp = self._get_with_retry(f'boards/{board_id}', {'fields': 'id,name,closed,url,shortLink'})
        _raise_for_status(resp, f'board {board_id}')
        return resp.json()

    # ── Webhooks (single attempt) ────────────────────────────────────────

    def _send(self, method: str, path: str, params: Dict[str, Any] = None, json: Dict[str, Any] = None):
        try:
            resp = self.http.request(method, self._url(path), params=self._params(params), json=json,
                                     timeout=TRELLO_CARD_TIMEOUT)
        except requests.exceptions.Timeout as e:
            raise TrelloTransportError(f"Timed out calling {method} {path}: {e}", timeout=True) from e
        except requests.exceptions.RequestException as e:
            raise TrelloTransportError(f"Network error calling {method} {path}: {e}") from e
        _raise_for_status(resp, f'{method} {path}')
        return resp

    def list_webhooks(self) -> List[Dict[str, Any]]:
        """Every webhook registered under this token."""
        return self._send('GET', f'tokens/{self.token}/webhooks').json()

    def create_webhook(self, callback_url: str, id_model: str, description: str = '') -> Dict[str, Any]:
        resp = self._send('POST', 'webhooks/', json={
            'callbackURL': callback_url,
            'idModel': id_model,
            'description': description,
        })
        return resp.json()

    def delete_webhook(self, webhook_id: str):
        self._send('DELETE', f'webhooks/{webhook_id}')


def _raise_for_status(resp: requests.Response, what: str):
    if resp.ok:
        return
    if resp.status_code == 401:
        raise TrelloAuthError()
    raise TrelloAPIError(f"Trello returned {resp.status_code} for {what}: {resp.text[:200]}",
                         status_code=resp.status_code)


def normalize_card(card: Dict[str, Any]) -> Dict[str, Any]:
    """Fill idList from the embedded list and trim nested collections to known fields."""
    if not card.get('idList') and (card.get('list') or {}).get('id'):
        card['idList'] = card['list']['id']

    if isinstance(card.get('members'), list):
        card['members'] = [
            {
                'id': m.get('id'),
                'fullName': m.get('fullName') or m.get('fullname') or m.get('full_name'),
                'username': m.get('username'),
            }
            for m in card['members']
        ]

    if isinstance(card.get('checklists'), list):
        card['checklists'] = [
            {
                'id': cl.get('id'),
                'name': cl.get('name'),
                'checkItems': [
                    {'id': item.get('id'), 'name': item.get('name'),
                     'state': item.get('state'), 'pos': item.get('pos') or 0}
                    for item in cl.get('checkItems') or []
                ],
            }
            for cl in card['checklists']
        ]

    if isinstance(card.get('attachments'), list):
        card['attachments'] = [
            {k: att.get(k) for k in ('id', 'name', 'url', 'mimeType', 'bytes', 'date')}
            for att in card['attachments']
        ]

    return card
