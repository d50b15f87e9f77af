"""
Notifications — Slack webhook alerts for operators.

Notification failure never blocks a job or a scan.
"""
import logging
import requests

from leadqueue.config import SLACK_WEBHOOK_URL
from leadqueue.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.notifications')


def _post(blocks):
    """Send blocks through the slack breaker. Raises on HTTP errors."""
    def send():
        resp = requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        resp.raise_for_status()
        return resp
    return get_breaker('slack').call(send)


def _header(text):
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def notify_job_failed(run):
    """Post a job failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        last_error = ''
        if run.errors:
            last_err = run.errors[-1] if isinstance(run.errors, list) else run.errors
            last_error = last_err.get('message', '') if isinstance(last_err, dict) else str(last_err)

        blocks = [
            _header(f"Job FAILED — {run.job}"),
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Run:* {run.id[:8]}"},
                    {"type": "mrkdwn", "text": f"*Processed:* {run.processed or 0}"},
                    {"type": "mrkdwn", "text": f"*Failed:* {run.failed or 0}"},
                    {"type": "mrkdwn", "text": f"*Resumable:* {'yes' if run.can_resume else 'no'}"},
                ]
            },
        ]
        if last_error:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{last_error[:500]}```"}
            })

        _post(blocks)
        logger.info("Job %s failure notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send failure notification for job %s", run.id[:8], exc_info=True)


def notify_conversion_leaks(scan):
    """Alert when a leak scan could not recover every missed conversion."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            _header("Conversion leaks need attention"),
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Potential leaks:* {scan['potential_leaks']}"},
                    {"type": "mrkdwn", "text": f"*Recovered:* {scan['recovered']}"},
                    {"type": "mrkdwn", "text": f"*Unrecovered:* {scan['unrecovered']}"},
                    {"type": "mrkdwn", "text": f"*Window:* last {scan['window_minutes']} min"},
                ]
            },
        ]
        people = scan.get('unrecovered_person_ids') or []
        if people:
            shown = ', '.join(str(p) for p in people[:20])
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"People: {shown}"}]
            })

        _post(blocks)
        logger.info("Leak alert sent (%d unrecovered)", scan['unrecovered'])

    except Exception:
        logger.error("Failed to send leak alert", exc_info=True)


def notify_queue_low(category, count, threshold):
    """Warn that a category queue is about to run dry."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            _header(f"Queue running low — {category}"),
            {
                "type": "section",
                "text": {"type": "mrkdwn",
                         "text": f"Only *{count}* active lead(s) left (threshold {threshold})."}
            },
        ]
        _post(blocks)
        logger.info("Low queue notification sent for %s", category)

    except Exception:
        logger.error("Failed to send low queue notification for %s", category, exc_info=True)
