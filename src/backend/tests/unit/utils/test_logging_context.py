"""
Unit tests for structlog context helpers
"""

import pytest
from structlog.contextvars import clear_contextvars, get_contextvars

from app.utils.logging_context import (
    bind_search_context,
    log_context,
    log_performance,
    unbind_context,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_contextvars()
    yield
    clear_contextvars()


def test_bind_search_context_skips_none():
    bind_search_context(session_id="s-1", user_id=None, search_query="laptop", analytics_id="a-1")

    assert get_contextvars() == {"session_id": "s-1", "search_query": "laptop", "analytics_id": "a-1"}


def test_unbind_context():
    bind_search_context(session_id="s-1", search_query="laptop")

    unbind_context("search_query")

    assert get_contextvars() == {"session_id": "s-1"}


def test_log_context_is_temporary():
    bind_search_context(session_id="s-1")

    with log_context(search_page=2):
        assert get_contextvars()["search_page"] == 2

    assert get_contextvars() == {"session_id": "s-1"}


def test_log_context_unbinds_on_error():
    with pytest.raises(RuntimeError):
        with log_context(search_page=3):
            raise RuntimeError("boom")

    assert "search_page" not in get_contextvars()


def test_log_performance_logs_start_and_completion():
    class RecordingLogger:
        def __init__(self):
            self.events = []

        def info(self, event, **kwargs):
            self.events.append((event, kwargs))

    logger = RecordingLogger()

    with log_performance("index_refresh", logger=logger):
        pass

    assert [e for e, _ in logger.events] == ["index_refresh_started", "index_refresh_completed"]
    assert logger.events[1][1]["duration_ms"] >= 0
