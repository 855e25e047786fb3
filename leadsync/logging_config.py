"""
Logging setup for the web process and the RQ sync workers.

LOG_FORMAT picks text (local) or one-line JSON (production). Sync code passes
`extra={'agency_id': ..., 'card_id': ...}` on per-tenant and per-card logs;
the JSON output carries those keys so a tenant's pass can be filtered out of
a shared worker log.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Record attributes copied into JSON output when a log call supplies them.
CONTEXT_FIELDS = ('agency_id', 'card_id', 'job_id')

# Chatty at INFO: HTTP pools on every Trello call, RQ job chatter, SQL echo.
QUIET_LOGGERS = (
    'urllib3',
    'requests',
    'rq.worker',
    'sqlalchemy.engine',
    'werkzeug',
)

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'


class JSONFormatter(logging.Formatter):

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _level_from_env():
    level = logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(app=None):
    """
    Replace the root handlers with one stderr handler. Safe to call again.

    When a Flask app is given its logger propagates to root instead of
    keeping Flask's default handler, so request errors share the format.
    """
    level = _level_from_env()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if os.getenv('LOG_FORMAT', 'text').lower() == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.handlers.clear()
        app.logger.propagate = True
