"""Tests for job and leak routes."""
from unittest.mock import patch

from leadqueue.pipeline.manager import run_job
from leadqueue.services.leak_detector import run_leak_monitor_tick


class TestJobRoutes:

    def test_launch(self, client, mock_queue):
        resp = client.post('/api/jobs', json={'job': 'lease_sweep'})

        assert resp.status_code == 202
        data = resp.get_json()
        assert data['job'] == 'lease_sweep'
        assert data['status'] == 'queued'
        mock_queue.enqueue.assert_called_once_with(run_job, data['id'], job_timeout=900)

    def test_unknown_job(self, client):
        resp = client.post('/api/jobs', json={'job': 'launch_rockets'})

        assert resp.status_code == 400
        assert 'daily_aging' in resp.get_json()['available']

    def test_get_and_list(self, client):
        job_id = client.post('/api/jobs', json={'job': 'queue_levels'}).get_json()['id']

        assert client.get(f'/api/jobs/{job_id}').get_json()['job'] == 'queue_levels'
        assert len(client.get('/api/jobs?job=queue_levels').get_json()) == 1

    def test_missing_job(self, client):
        assert client.get('/api/jobs/nope').status_code == 404


class TestLeakRoutes:

    def test_monitor_start_stop(self, client, mock_queue):
        resp = client.post('/api/leaks/monitor/start')
        assert resp.status_code == 200
        assert resp.get_json()['running'] is True
        mock_queue.enqueue.assert_called_once_with(run_leak_monitor_tick)

        assert client.get('/api/leaks/monitor').get_json()['running'] is True
        assert client.post('/api/leaks/monitor/stop').get_json()['running'] is False

    def test_scan(self, client):
        with patch('leadqueue.routes.leaks.scan_for_leaks', return_value={'potential_leaks': 0}) as scan:
            resp = client.post('/api/leaks/scan', json={'minutes_back': 15})

        assert resp.status_code == 200
        scan.assert_called_once_with(minutes_back=15)

    def test_health_and_review(self, client):
        health = client.get('/api/leaks/health?hours_back=1')
        assert health.status_code == 200
        review = client.get('/api/leaks/review')
        assert review.status_code == 200
        assert review.get_json() == []
