"""Tests for leadsync.logging_config — handler setup, JSON context fields, quiet loggers."""
import json
import logging
import os
import sys
from unittest.mock import patch

import pytest
from flask import Flask

from leadsync.logging_config import configure_logging, JSONFormatter, QUIET_LOGGERS


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    saved = (root.level, root.handlers[:])
    quiet_levels = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    root.setLevel(saved[0])
    root.handlers = saved[1]
    for name, level in quiet_levels.items():
        logging.getLogger(name).setLevel(level)


def _configure(**env):
    with patch.dict(os.environ, env):
        configure_logging()


class TestLevels:

    @pytest.mark.parametrize('value, expected', [
        ('debug', logging.DEBUG),
        ('WARNING', logging.WARNING),
        ('NONSENSE', logging.INFO),
        ('BASIC_FORMAT', logging.INFO),
    ])
    def test_log_level_from_env(self, value, expected):
        _configure(LOG_LEVEL=value)
        assert logging.getLogger().level == expected

    def test_repeated_calls_keep_one_handler(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestQuietLoggers:

    def test_worker_and_sql_info_suppressed(self, capsys):
        _configure(LOG_LEVEL='DEBUG', LOG_FORMAT='text')
        logging.getLogger('rq.worker').info("default: leadsync.sync.jobs.run_sync_job('agency-1')")
        logging.getLogger('sqlalchemy.engine').info('SELECT leads.id FROM leads')
        logging.getLogger('urllib3').debug('Starting new HTTPS connection (1): api.trello.com:443')
        assert capsys.readouterr().err == ''

    def test_worker_warnings_still_emitted(self, capsys):
        _configure(LOG_FORMAT='text')
        logging.getLogger('rq.worker').warning('Moving job to FailedJobRegistry')
        assert 'Moving job to FailedJobRegistry' in capsys.readouterr().err

    def test_sync_loggers_not_quieted(self, capsys):
        _configure(LOG_LEVEL='DEBUG', LOG_FORMAT='text')
        logging.getLogger('sync.engine').debug('Cards per list: Nuevos=3')
        output = capsys.readouterr().err
        assert 'DEBUG sync.engine: Cards per list: Nuevos=3' in output


class TestJSONOutput:

    def test_context_fields_from_extra(self, capsys):
        _configure(LOG_FORMAT='json', LOG_LEVEL='INFO')
        logging.getLogger('sync.engine').error(
            'Error fetching card %s', 'c1', extra={'agency_id': 'agency-1', 'card_id': 'c1'},
        )
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['message'] == 'Error fetching card c1'
        assert parsed['agency_id'] == 'agency-1'
        assert parsed['card_id'] == 'c1'
        assert 'job_id' not in parsed

    def test_exception_included(self):
        try:
            raise ValueError('Trello returned 503')
        except ValueError:
            record = logging.LogRecord('sync.service', logging.ERROR, '', 0, 'Sync crashed', None, sys.exc_info())
        parsed = json.loads(JSONFormatter().format(record))
        assert 'ValueError: Trello returned 503' in parsed['exception']
        assert parsed['level'] == 'ERROR'


class TestFlaskApp:

    def test_app_logger_propagates_to_root(self, capsys):
        app = Flask('leadsync-test')
        with patch.dict(os.environ, {'LOG_FORMAT': 'text', 'LOG_LEVEL': 'INFO'}):
            configure_logging(app)
        app.logger.info('Exception on /api/trello/sync [POST]')
        assert app.logger.handlers == []
        assert 'Exception on /api/trello/sync [POST]' in capsys.readouterr().err
