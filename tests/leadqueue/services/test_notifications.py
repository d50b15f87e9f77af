"""Tests for leadqueue.services.notifications — Slack alerts."""
from unittest.mock import MagicMock, patch

import pytest

from leadqueue.services.circuit_breaker import CircuitBreaker
from leadqueue.services.notifications import notify_job_failed, notify_conversion_leaks, notify_queue_low


@pytest.fixture
def slack(fake_redis):
    """Webhook configured, requests.post mocked, breaker on fake Redis."""
    breaker = CircuitBreaker('slack', fake_redis)
    with patch('leadqueue.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
            patch('leadqueue.services.notifications.get_breaker', return_value=breaker), \
            patch('leadqueue.services.notifications.requests.post') as mock_post:
        mock_post.return_value = MagicMock(status_code=200)
        yield mock_post


def _run(**overrides):
    run = MagicMock()
    run.id = 'job-12345678'
    run.job = 'discovery_cycle'
    run.processed = 0
    run.failed = 1
    run.can_resume = False
    run.errors = [{'message': 'SourceUnavailableError: replica down'}]
    for key, value in overrides.items():
        setattr(run, key, value)
    return run


class TestNotifyJobFailed:

    def test_posts_job_and_error(self, slack):
        notify_job_failed(_run())
        blocks = slack.call_args.kwargs['json']['blocks']
        assert 'discovery_cycle' in blocks[0]['text']['text']
        assert 'replica down' in blocks[-1]['text']['text']

    def test_no_webhook_no_post(self):
        with patch('leadqueue.services.notifications.SLACK_WEBHOOK_URL', None), \
                patch('leadqueue.services.notifications.requests.post') as mock_post:
            notify_job_failed(_run())
        mock_post.assert_not_called()

    def test_post_failure_is_swallowed(self, slack):
        slack.side_effect = ConnectionError("slack down")
        notify_job_failed(_run())


class TestOtherAlerts:

    def test_leak_alert_lists_people(self, slack):
        notify_conversion_leaks({
            'potential_leaks': 3, 'recovered': 1, 'unrecovered': 2, 'window_minutes': 5,
            'unrecovered_person_ids': [11, 12],
        })
        blocks = slack.call_args.kwargs['json']['blocks']
        assert blocks[-1]['elements'][0]['text'] == 'People: 11, 12'

    def test_queue_low(self, slack):
        notify_queue_low('unsigned', 1, 5)
        assert slack.called
