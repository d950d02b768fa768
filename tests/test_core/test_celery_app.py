"""Tests for the scheduled task base class."""

import pytest

from printshop.core.celery_app import LoggedTask, celery_app
from printshop.core.logging import clear_context, get_request_id


@celery_app.task(bind=True, base=LoggedTask, name="tests.current_request_id")
def current_request_id(self) -> str:
    return get_request_id()


@celery_app.task(bind=True, base=LoggedTask, name="tests.failing_job")
def failing_job(self) -> None:
    raise RuntimeError("carrier down")


@pytest.fixture(autouse=True)
def fresh_context():
    clear_context()
    yield
    clear_context()


class TestLoggedTask:
    def test_task_id_is_bound_while_running(self) -> None:
        result = current_request_id.apply(task_id="sync-run-1")

        assert result.get() == "sync-run-1"
        assert get_request_id() == ""

    def test_context_is_cleared_after_failure(self) -> None:
        result = failing_job.apply(task_id="sync-run-2")

        assert result.failed()
        assert isinstance(result.result, RuntimeError)
        assert get_request_id() == ""
