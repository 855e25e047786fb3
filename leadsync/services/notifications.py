"""
Notifications — Slack webhook integration for sync events.

Notification failure never blocks a sync.
"""
import logging
import requests

from leadsync.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')


def notify_sync_complete(agency_id, summary):
    """Post a sync summary to Slack when the pass recorded errors."""
    if not SLACK_WEBHOOK_URL or not summary.errors:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Trello sync finished with errors — {agency_id}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Synced:* {summary.total}"},
                    {"type": "mrkdwn", "text": f"*Created:* {summary.created}"},
                    {"type": "mrkdwn", "text": f"*Updated:* {summary.updated}"},
                    {"type": "mrkdwn", "text": f"*Deleted:* {summary.deleted + summary.orphaned_deleted}"},
                    {"type": "mrkdwn", "text": f"*Errors:* {summary.errors}"},
                    {"type": "mrkdwn", "text": f"*Rate limits:* {summary.rate_limited}"},
                ]
            },
        ]
        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Sync notification sent for agency %s", agency_id)

    except Exception:
        logger.error("Failed to send sync notification for agency %s", agency_id, exc_info=True)


def notify_sync_failed(agency_id, error):
    """Post a fatal sync failure to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"Trello sync FAILED — {agency_id}"},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{str(error)[:500]}```"},
            },
        ]
        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Sync failure notification sent for agency %s", agency_id)

    except Exception:
        logger.error("Failed to send failure notification for agency %s", agency_id, exc_info=True)
