"""Tests for leadsync.services.trello — TrelloClient listing, card retry and error mapping."""
import pytest
import requests
from unittest.mock import MagicMock

from leadsync.services.trello import (
    TrelloClient, TrelloTransportError, TrelloAPIError, TrelloRateLimitError,
    TrelloAuthError, CardNotFoundError, is_rate_limit_error, normalize_card,
)


def _resp(status_code, payload=None, headers=None, text=''):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.headers = headers or {}
    resp.text = text
    resp.json.return_value = payload
    return resp


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(http, sleeps):
    return TrelloClient('key', 'tok', base_url='https://trello.test/1', session=http, sleep=sleeps.append)


class TestListing:
    """Bulk listing calls are single-shot; any failure is a TrelloTransportError."""

    def test_list_open_cards_requests_minimal_fields(self, client, http):
        http.get.return_value = _resp(200, [{'id': 'c1'}])
        assert client.list_open_cards('b1') == [{'id': 'c1'}]
        url = http.get.call_args[0][0]
        params = http.get.call_args[1]['params']
        assert url == 'https://trello.test/1/boards/b1/cards/open'
        assert params['fields'] == 'id,name,dateLastActivity,idList'
        assert params['key'] == 'key'
        assert params['token'] == 'tok'

    def test_list_open_lists_filters_open(self, client, http):
        http.get.return_value = _resp(200, [{'id': 'l1', 'name': 'Nuevos'}])
        assert client.list_open_lists('b1') == [{'id': 'l1', 'name': 'Nuevos'}]
        assert http.get.call_args[1]['params']['filter'] == 'open'

    def test_timeout_is_flagged(self, client, http):
        http.get.side_effect = requests.exceptions.Timeout('slow')
        with pytest.raises(TrelloTransportError) as exc:
            client.list_open_cards('b1')
        assert exc.value.timeout is True

    def test_network_error_is_not_timeout(self, client, http):
        http.get.side_effect = requests.exceptions.ConnectionError('refused')
        with pytest.raises(TrelloTransportError) as exc:
            client.list_open_lists('b1')
        assert exc.value.timeout is False

    def test_non_ok_status_is_fatal_without_retry(self, client, http, sleeps):
        http.get.return_value = _resp(500, text='oops')
        with pytest.raises(TrelloTransportError) as exc:
            client.list_open_cards('b1')
        assert exc.value.status_code == 500
        assert http.get.call_count == 1
        assert sleeps == []


class TestGetCard:

    def test_returns_normalized_card(self, client, http):
        http.get.return_value = _resp(200, {'id': 'c1', 'list': {'id': 'l1', 'name': 'Nuevos'}})
        card = client.get_card('c1')
        assert card['idList'] == 'l1'

    def test_explicit_404_raises_card_not_found(self, client, http):
        http.get.return_value = _resp(404, text='The requested resource was not found.')
        with pytest.raises(CardNotFoundError) as exc:
            client.get_card('gone')
        assert exc.value.card_id == 'gone'

    def test_401_raises_auth_error(self, client, http):
        http.get.return_value = _resp(401)
        with pytest.raises(TrelloAuthError):
            client.get_card('c1')

    def test_other_4xx_raises_api_error_not_not_found(self, client, http):
        http.get.return_value = _resp(400, text='invalid id')
        with pytest.raises(TrelloAPIError) as exc:
            client.get_card('c1')
        assert not isinstance(exc.value, CardNotFoundError)
        assert exc.value.status_code == 400

    def test_rate_limited_twice_then_succeeds(self, client, http, sleeps):
        http.get.side_effect = [_resp(429), _resp(429), _resp(200, {'id': 'Z', 'idList': 'l1'})]
        hits = []
        card = client.get_card('Z', on_rate_limit=lambda: hits.append(1))
        assert card['id'] == 'Z'
        assert len(hits) == 2
        assert sleeps == [1.0, 2.0]

    def test_rate_limit_exhausted_raises_rate_limit_error(self, client, http, sleeps):
        http.get.side_effect = [_resp(429), _resp(429), _resp(429)]
        with pytest.raises(TrelloRateLimitError):
            client.get_card('c1')
        assert sleeps == [1.0, 2.0]

    def test_retry_after_header_is_honored_and_capped(self, client, http, sleeps):
        http.get.side_effect = [
            _resp(429, headers={'Retry-After': '3'}),
            _resp(429, headers={'Retry-After': '120'}),
            _resp(200, {'id': 'c1', 'idList': 'l1'}),
        ]
        client.get_card('c1')
        assert sleeps == [3.0, 30.0]

    def test_server_error_retried(self, client, http, sleeps):
        http.get.side_effect = [_resp(502), _resp(200, {'id': 'c1', 'idList': 'l1'})]
        assert client.get_card('c1')['id'] == 'c1'
        assert sleeps == [1.0]

    def test_server_errors_exhausted_no_wait_after_last_attempt(self, client, http, sleeps):
        http.get.side_effect = [_resp(503), _resp(503), _resp(503)]
        with pytest.raises(TrelloAPIError) as exc:
            client.get_card('c1')
        assert exc.value.status_code == 503
        assert sleeps == [1.0, 2.0]

    def test_network_errors_exhausted_raise_api_error(self, client, http, sleeps):
        http.get.side_effect = requests.exceptions.ConnectionError('reset')
        with pytest.raises(TrelloAPIError):
            client.get_card('c1')
        assert http.get.call_count == 3
        assert sleeps == [1.0, 2.0]


class TestCredentialCalls:

    def test_get_member(self, client, http):
        http.get.return_value = _resp(200, {'id': 'm1', 'username': 'ana'})
        assert client.get_member()['username'] == 'ana'
        assert http.get.call_args[0][0].endswith('/members/me')

    def test_get_board_not_found(self, client, http):
        http.get.return_value = _resp(404)
        with pytest.raises(TrelloAPIError) as exc:
            client.get_board('b1')
        assert exc.value.status_code == 404

    def test_get_member_unauthorized(self, client, http):
        http.get.return_value = _resp(401)
        with pytest.raises(TrelloAuthError):
            client.get_member()


class TestWebhookCalls:

    def test_list_webhooks_uses_token_path(self, client, http):
        http.request.return_value = _resp(200, [{'id': 'w1', 'idModel': 'b1'}])
        assert client.list_webhooks() == [{'id': 'w1', 'idModel': 'b1'}]
        method, url = http.request.call_args[0]
        assert method == 'GET'
        assert url == 'https://trello.test/1/tokens/tok/webhooks'
        assert http.request.call_args.kwargs['params'] == {'key': 'key', 'token': 'tok'}

    def test_create_webhook_posts_callback_and_model(self, client, http):
        http.request.return_value = _resp(200, {'id': 'w2', 'active': True})
        hook = client.create_webhook('https://leads.example.com/api/trello/webhook', 'b1', description='d')
        assert hook['id'] == 'w2'
        assert http.request.call_args[0] == ('POST', 'https://trello.test/1/webhooks/')
        assert http.request.call_args.kwargs['json'] == {
            'callbackURL': 'https://leads.example.com/api/trello/webhook',
            'idModel': 'b1',
            'description': 'd',
        }

    def test_delete_webhook_error_raised(self, client, http):
        http.request.return_value = _resp(404, text='not found')
        with pytest.raises(TrelloAPIError) as exc:
            client.delete_webhook('w9')
        assert exc.value.status_code == 404

    def test_network_failure_is_transport_error(self, client, http):
        http.request.side_effect = requests.exceptions.ConnectionError('reset')
        with pytest.raises(TrelloTransportError):
            client.list_webhooks()


class TestIsRateLimitError:

    def test_typed_error(self):
        assert is_rate_limit_error(TrelloRateLimitError()) is True

    @pytest.mark.parametrize('message', ['HTTP 429', 'Rate limit hit', 'Too Many Requests'])
    def test_message_markers(self, message):
        assert is_rate_limit_error(Exception(message)) is True

    def test_other_errors(self):
        assert is_rate_limit_error(Exception('connection reset')) is False


class TestNormalizeCard:

    def test_trims_members_and_checklists(self):
        card = normalize_card({
            'id': 'c1',
            'idList': 'l1',
            'members': [{'id': 'm1', 'fullName': 'Ana Diaz', 'username': 'ana', 'avatarHash': 'x'}],
            'checklists': [{'id': 'k1', 'name': 'Docs', 'idBoard': 'b', 'checkItems': [
                {'id': 'i1', 'name': 'Pasaporte', 'state': 'complete', 'pos': 1, 'idChecklist': 'k1'},
            ]}],
        })
        assert card['members'] == [{'id': 'm1', 'fullName': 'Ana Diaz', 'username': 'ana'}]
        assert card['checklists'][0]['checkItems'][0] == {
            'id': 'i1', 'name': 'Pasaporte', 'state': 'complete', 'pos': 1,
        }

    def test_keeps_existing_id_list(self):
        card = normalize_card({'id': 'c1', 'idList': 'l1', 'list': {'id': 'l2'}})
        assert card['idList'] == 'l1'
