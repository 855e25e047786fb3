"""
Centralized configuration — env vars, sync pacing constants, lead vocabularies.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Runtime ──────────────────────────────────────────────────────────────────
APP_ENV = os.getenv('APP_ENV', os.getenv('FLASK_ENV', 'development'))
IS_PRODUCTION = APP_ENV == 'production'

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Trello ────────────────────────────────────────────────────────────────────
TRELLO_API_URL = os.getenv('TRELLO_API_URL', 'https://api.trello.com/1')
TRELLO_LIST_TIMEOUT = float(os.getenv('TRELLO_LIST_TIMEOUT', '30'))
TRELLO_CARD_TIMEOUT = float(os.getenv('TRELLO_CARD_TIMEOUT', '30'))
TRELLO_WEBHOOK_SECRET = os.getenv('TRELLO_WEBHOOK_SECRET')
TRELLO_WEBHOOK_CALLBACK_URL = os.getenv('TRELLO_WEBHOOK_CALLBACK_URL', '')

# ── Sync pacing (seconds) ────────────────────────────────────────────────────
CARD_DELAY = 0.1
BATCH_SIZE = 10
BATCH_PAUSE = 2.0
RATE_LIMIT_COOLDOWN = 5.0

# Outer retries around a card fetch; the client retries 3x on its own.
CARD_FETCH_RETRIES = 2
HTTP_RETRIES = 3
HTTP_BASE_DELAY = 1.0
RATE_LIMIT_BASE_DELAY = 2.0
RATE_LIMIT_MAX_DELAY = 30.0

SYNC_CONCURRENCY = int(os.getenv('SYNC_CONCURRENCY', '1'))
SYNC_LOCK_TTL = int(os.getenv('SYNC_LOCK_TTL', '900'))

# ── Auth ─────────────────────────────────────────────────────────────────────
API_TOKEN = os.getenv('API_TOKEN')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Lead vocabularies ─────────────────────────────────────────────────────────
LEAD_STATUSES = [
    'NEW',
    'IN_PROGRESS',
    'QUOTED',
    'WON',
    'LOST',
]

LEAD_REGIONS = [
    'ARGENTINA',
    'CARIBE',
    'BRASIL',
    'EUROPA',
    'EEUU',
    'OTROS',
    'CRUCEROS',
]

LEAD_SOURCES = ['Trello', 'Manychat', 'Other']

TRELLO_SOURCE = 'Trello'
DEFAULT_STATUS = 'NEW'
DEFAULT_REGION = 'OTROS'

# ── Sync run status values ───────────────────────────────────────────────────
SYNC_RUN_STATUSES = [
    'running',
    'completed',
    'failed',
]
