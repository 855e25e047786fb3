"""Tests for leadsync.services.notifications — Slack sync messages."""
from unittest.mock import patch

from leadsync.services.notifications import notify_sync_complete, notify_sync_failed
from leadsync.sync.engine import SyncSummary


class TestNotifySyncComplete:

    def test_no_webhook_configured_is_noop(self):
        with patch('leadsync.services.notifications.SLACK_WEBHOOK_URL', None), \
             patch('leadsync.services.notifications.requests.post') as post:
            notify_sync_complete('agency-1', SyncSummary(errors=3))
        post.assert_not_called()

    def test_clean_pass_is_not_posted(self):
        with patch('leadsync.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
             patch('leadsync.services.notifications.requests.post') as post:
            notify_sync_complete('agency-1', SyncSummary(total=5))
        post.assert_not_called()

    def test_pass_with_errors_is_posted(self):
        with patch('leadsync.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
             patch('leadsync.services.notifications.requests.post') as post:
            notify_sync_complete('agency-1', SyncSummary(total=5, errors=2))
        post.assert_called_once()
        blocks = post.call_args[1]['json']['blocks']
        assert 'agency-1' in blocks[0]['text']['text']

    def test_post_failure_is_swallowed(self):
        with patch('leadsync.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
             patch('leadsync.services.notifications.requests.post', side_effect=ConnectionError('down')):
            notify_sync_complete('agency-1', SyncSummary(errors=1))


class TestNotifySyncFailed:

    def test_posts_error_text(self):
        with patch('leadsync.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
             patch('leadsync.services.notifications.requests.post') as post:
            notify_sync_failed('agency-1', RuntimeError('Trello returned 503'))
        body = post.call_args[1]['json']
        assert 'Trello returned 503' in body['blocks'][1]['text']['text']
