"""Shared test fixtures."""
import copy
import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from leadsync.database import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import leadsync.models.user
    import leadsync.models.trello_settings
    import leadsync.models.lead
    import leadsync.models.sync_run
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that route handlers calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('leadsync.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


class FakeRedis:
    """Minimal in-memory Redis fake: string keys plus the lease release script."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for k in keys:
            if self.store.pop(k, None) is not None:
                removed += 1
            self.ttls.pop(k, None)
        return removed

    def eval(self, script, numkeys, *args):
        key, token = args[0], args[1]
        if self.store.get(key) != token:
            return 0
        if 'pexpire' in script:
            self.ttls[key] = int(args[2]) / 1000
            return 1
        return self.delete(key)


@pytest.fixture(autouse=True)
def fake_redis():
    """Dict-backed Redis patched in for the shared client."""
    fake = FakeRedis()
    with patch('leadsync.extensions.redis_client', fake):
        yield fake


@pytest.fixture
def app():
    """Flask test app."""
    from leadsync import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


class FakeTrelloClient:
    """
    Stand-in for TrelloClient.

    `details` maps card id → card payload, an exception instance to raise,
    or a list of those consumed one per call.
    """

    def __init__(self, cards=None, lists=None, details=None, list_error=None, card_list_error=None):
        self.cards = cards or []
        self.lists = lists or []
        self.details = details or {}
        self.list_error = list_error
        self.card_list_error = card_list_error
        self.fetched = []

    def list_open_cards(self, board_id):
        if self.card_list_error:
            raise self.card_list_error
        return [dict(card) for card in self.cards]

    def list_open_lists(self, board_id):
        if self.list_error:
            raise self.list_error
        return [dict(lst) for lst in self.lists]

    def get_card(self, card_id, on_rate_limit=None):
        self.fetched.append(card_id)
        outcome = self.details.get(card_id)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            raise AssertionError(f"unexpected fetch of card {card_id}")
        return copy.deepcopy(outcome)


@pytest.fixture
def fake_trello():
    return FakeTrelloClient


@pytest.fixture
def make_settings(db_session):
    """Factory fixture — persists a TrelloSettings row for an agency."""
    from leadsync.models.trello_settings import TrelloSettings

    def _make(agency_id='agency-1', **overrides):
        defaults = dict(
            agency_id=agency_id,
            trello_api_key='key-123',
            trello_token='token-456',
            board_id=f'board-{agency_id}',
            list_status_mapping={},
            list_region_mapping={},
            last_sync_at=None,
        )
        defaults.update(overrides)
        settings = TrelloSettings(**defaults)
        db_session.add(settings)
        db_session.commit()
        return settings
    return _make


@pytest.fixture
def make_lead(db_session):
    """Factory fixture — persists a Lead row."""
    from leadsync.models.lead import Lead

    def _make(**overrides):
        defaults = dict(
            agency_id='agency-1',
            source='Trello',
            external_id='card-x',
            status='NEW',
            region='OTROS',
            contact_name='Existing lead',
            trello_list_id='list-new',
        )
        defaults.update(overrides)
        lead = Lead(**defaults)
        db_session.add(lead)
        db_session.commit()
        return lead
    return _make


def _card(card_id, list_id='list-new', name=None, activity='2024-01-05T12:00:00.000Z', **extra):
    """Full-detail card payload resembling Trello's GET /cards/{id}."""
    card = {
        'id': card_id,
        'name': name or f'Cliente {card_id} - Cancún',
        'desc': '',
        'closed': False,
        'idList': list_id,
        'idBoard': 'board-agency-1',
        'url': f'https://trello.com/c/{card_id}',
        'dateLastActivity': activity,
        'labels': [],
        'members': [],
        'list': {'id': list_id, 'name': 'Nuevos'},
    }
    card.update(extra)
    return card


def _stub(card_id, list_id='list-new', activity='2024-01-05T12:00:00.000Z'):
    """Minimal card as returned by the open-cards listing."""
    return {'id': card_id, 'name': f'Cliente {card_id}', 'idList': list_id, 'dateLastActivity': activity}


@pytest.fixture
def make_card():
    return _card


@pytest.fixture
def make_stub():
    return _stub
