"""Tests for structured logging configuration."""
import json
import logging
import os
from unittest.mock import patch

import pytest

from leadqueue.logging_config import configure_logging, JSONFormatter


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger state after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = root.handlers[:]
    yield
    root.setLevel(original_level)
    root.handlers = original_handlers


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_default_level_is_info(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('LOG_LEVEL', None)
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_log_level_case_insensitive(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'debug'}):
            configure_logging()
        assert logging.getLogger().level == logging.DEBUG

    def test_invalid_log_level_defaults_to_info(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'NONSENSE'}):
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_reconfigure_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_rq_worker_logger_quieted(self):
        configure_logging()
        assert logging.getLogger('rq.worker').level == logging.WARNING

    def test_text_format_includes_logger_name(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        logging.getLogger('services.dispatch').info("claimed lead %s", 42)
        output = capsys.readouterr().err
        assert 'services.dispatch' in output
        assert 'claimed lead 42' in output


class TestJSONFormatter:
    """JSONFormatter emits one JSON object per record."""

    def _record(self, msg='hello', **extra):
        record = logging.LogRecord('pipeline.manager', logging.INFO, __file__, 1, msg, (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry['level'] == 'INFO'
        assert entry['logger'] == 'pipeline.manager'
        assert entry['message'] == 'hello'
        assert 'timestamp' in entry

    def test_context_fields_copied(self):
        entry = json.loads(JSONFormatter().format(self._record(job_id='abc', agent_id='agent-7')))
        assert entry['job_id'] == 'abc'
        assert entry['agent_id'] == 'agent-7'

    def test_unset_context_fields_omitted(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert 'person_id' not in entry

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys
            record = logging.LogRecord('x', logging.ERROR, __file__, 1, 'failed', (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert 'ValueError: boom' in entry['exception']
