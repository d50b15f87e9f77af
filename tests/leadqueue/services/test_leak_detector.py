"""Tests for leadqueue.services.leak_detector — leak scans, recovery and the monitor."""
import json
from datetime import timedelta
from unittest.mock import patch

import pytest

from leadqueue.database import utcnow
from leadqueue.models.call_contact import CallContact
from leadqueue.models.conversion_record import ConversionRecord
from leadqueue.models.enums import CallOutcome, Category, ConversionType, RecoveryStatus, TransitionSource
from leadqueue.models.lead_transition import LeadTransition
from leadqueue.pipeline.mock_sources import InMemoryEligibilitySource
from leadqueue.services.conversions import record_conversion
from leadqueue.services.leak_detector import (
    LeakMonitor, scan_for_leaks, list_manual_review, get_health_metrics,
)


@pytest.fixture(autouse=True)
def mock_notify():
    with patch('leadqueue.services.leak_detector.notify_conversion_leaks') as m:
        yield m


@pytest.fixture
def make_exit(db_session, make_lead):
    """An exit transition with no conversion logged: a leak."""
    def _make(person_id, minutes_ago=1, from_category=Category.UNSIGNED):
        make_lead(person_id, category=None, active=False, score=20)
        row = LeadTransition(
            person_id=person_id,
            from_category=from_category,
            to_category=None,
            reason='No longer eligible',
            source=TransitionSource.CONVERSION_SWEEP,
            conversion_logged=False,
            occurred_at=utcnow() - timedelta(minutes=minutes_ago),
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _make


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------

class TestScanForLeaks:

    def test_recovers_exactly_one_attributed_record(self, db_session, make_exit, mock_notify):
        row = make_exit(1301)
        db_session.add(CallContact(person_id=1301, agent_id='agent-7', outcome=CallOutcome.ANSWERED,
                                   talk_time_seconds=240, started_at=row.occurred_at - timedelta(hours=2)))
        db_session.commit()
        source = InMemoryEligibilitySource()
        source.set_person(1301, enabled=False)

        result = scan_for_leaks(minutes_back=5, source=source)

        assert result['potential_leaks'] == 1
        assert result['recovered'] == 1
        assert result['unrecovered'] == 0
        records = db_session.query(ConversionRecord).filter_by(person_id=1301).all()
        assert len(records) == 1
        assert records[0].conversion_type == ConversionType.NO_LONGER_ELIGIBLE
        assert records[0].primary_agent_id == 'agent-7'
        assert records[0].source == 'leak_recovery'
        assert row.recovery_status == RecoveryStatus.RECOVERED
        assert row.conversion_logged is True
        mock_notify.assert_not_called()

        again = scan_for_leaks(minutes_back=5, source=source)
        assert again['exits_checked'] == 0
        assert db_session.query(ConversionRecord).filter_by(person_id=1301).count() == 1

    def test_existing_conversion_is_linked(self, db_session, make_exit):
        row = make_exit(1302)
        record, _ = record_conversion(1302, ConversionType.SIGNATURE_OBTAINED, converted_at=row.occurred_at)
        result = scan_for_leaks(minutes_back=5, source=InMemoryEligibilitySource())
        assert result['exits_checked'] == 1
        assert result['potential_leaks'] == 0
        assert row.recovery_status == RecoveryStatus.ALREADY_LOGGED
        assert row.conversion_id == record.id

    def test_unexplained_exit_goes_to_manual_review(self, make_exit, mock_notify):
        make_exit(1303)
        source = InMemoryEligibilitySource()
        source.set_person(1303, has_signature=False, has_open_claim=True)   # still eligible
        result = scan_for_leaks(minutes_back=5, source=source)
        assert result['manual_review'] == 1
        assert result['unrecovered_person_ids'] == [1303]
        assert [r['person_id'] for r in list_manual_review()] == [1303]
        mock_notify.assert_called_once()

    def test_source_outage_retried_next_scan(self, db_session, make_exit):
        row = make_exit(1304)
        source = InMemoryEligibilitySource()
        source.set_person(1304, has_signature=True, pending_count=0)
        source.unavailable = True
        first = scan_for_leaks(minutes_back=5, source=source)
        assert first['recovery_failed'] == 1
        assert row.recovery_status == RecoveryStatus.RECOVERY_FAILED

        # Outside the window now, but failed recoveries are always retried
        source.unavailable = False
        second = scan_for_leaks(minutes_back=0, source=source)
        assert second['recovered'] == 1
        record = db_session.query(ConversionRecord).filter_by(person_id=1304).one()
        assert record.conversion_type == ConversionType.SIGNATURE_OBTAINED

    def test_old_exits_outside_window_ignored(self, make_exit):
        make_exit(1305, minutes_ago=30)
        result = scan_for_leaks(minutes_back=5, source=InMemoryEligibilitySource())
        assert result['exits_checked'] == 0


class TestHealthMetrics:

    def test_aggregates_scans(self, make_exit):
        make_exit(1311)
        source = InMemoryEligibilitySource()
        source.set_person(1311, enabled=False)
        scan_for_leaks(minutes_back=5, source=source)
        scan_for_leaks(minutes_back=5, source=source)
        health = get_health_metrics(hours_back=1)
        assert health['scans'] == 2
        assert health['potential_leaks'] == 1
        assert health['recovery_rate'] == 1.0
        assert health['last_scan_at'] is not None

    def test_no_scans(self):
        health = get_health_metrics()
        assert health['scans'] == 0
        assert health['recovery_rate'] == 1.0


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class TestLeakMonitor:
    """Start/stop/tick against fake Redis and a mock RQ queue."""

    @pytest.fixture
    def monitor(self, fake_redis, mock_queue):
        return LeakMonitor(fake_redis, mock_queue, interval_seconds=60)

    def test_start_arms_first_tick_once(self, monitor, mock_queue):
        assert monitor.start()['running'] is True
        monitor.start()
        assert mock_queue.enqueue.call_count == 1

    def test_stop(self, monitor):
        monitor.start()
        assert monitor.stop()['running'] is False

    def test_tick_when_stopped(self, monitor):
        assert monitor.tick() is None

    def test_tick_skips_while_scan_in_progress(self, monitor, fake_redis, mock_queue):
        monitor.start()
        fake_redis.set(LeakMonitor.KEY_LOCK, '1')
        assert monitor.tick() == {'skipped': True}
        mock_queue.enqueue_in.assert_called_once()
        assert mock_queue.enqueue_in.call_args.args[0] == timedelta(seconds=60)

    def test_start_rearms_a_dead_chain(self, monitor, fake_redis, mock_queue):
        # A worker killed mid-scan leaves the running flag behind with nothing armed
        fake_redis.set(LeakMonitor.KEY_RUNNING, '1')
        assert monitor.status()['chain_alive'] is False
        status = monitor.start()
        assert mock_queue.enqueue.call_count == 1
        assert status['running'] is True
        assert status['chain_alive'] is True

    def test_stop_clears_heartbeat(self, monitor, fake_redis):
        monitor.start()
        monitor.stop()
        assert not fake_redis.exists(LeakMonitor.KEY_HEARTBEAT)

    def test_tick_scans_and_rearms(self, monitor, fake_redis, mock_queue):
        monitor.start()
        scan = {'potential_leaks': 0, 'recovered': 0, 'unrecovered': 0}
        with patch('leadqueue.services.leak_detector.scan_for_leaks', return_value=scan):
            assert monitor.tick() == scan
        assert not fake_redis.exists(LeakMonitor.KEY_LOCK)
        assert json.loads(fake_redis.get(LeakMonitor.KEY_LAST))['potential_leaks'] == 0
        delay = mock_queue.enqueue_in.call_args.args[0]
        assert delay == timedelta(seconds=60)

    def test_failed_scan_still_releases_lock(self, monitor, fake_redis, mock_queue):
        monitor.start()
        with patch('leadqueue.services.leak_detector.scan_for_leaks', side_effect=RuntimeError("db down")):
            assert monitor.tick() == {'error': True}
        assert not fake_redis.exists(LeakMonitor.KEY_LOCK)
        assert mock_queue.enqueue_in.called
