"""
BaseService transaction and timing behaviour, with a mocked session.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from studio_booking.core.exceptions import ServiceException
from studio_booking.services.base import BaseService


class _TimedService(BaseService):
    @BaseService.measure_operation("lookup")
    def lookup(self, fail: bool = False) -> str:
        if fail:
            raise ValueError("boom")
        return "ok"


@pytest.fixture
def service():
    BaseService._class_metrics.pop("_TimedService", None)
    yield _TimedService(MagicMock())
    BaseService._class_metrics.pop("_TimedService", None)


def test_measured_operation_records_successes_and_failures(service):
    assert service.lookup() == "ok"
    with pytest.raises(ValueError):
        service.lookup(fail=True)

    metrics = service.get_metrics()["lookup"]
    assert metrics["count"] == 2
    assert metrics["success_count"] == 1
    assert metrics["failure_count"] == 1
    assert metrics["success_rate"] == 0.5


def test_measured_operation_keeps_name():
    assert _TimedService.lookup._operation_name == "lookup"
    assert _TimedService.lookup.__name__ == "lookup"


def test_transaction_commits_on_success(service):
    with service.transaction():
        pass

    service.db.commit.assert_called_once()
    service.db.rollback.assert_not_called()


def test_transaction_wraps_database_errors(service):
    service.db.commit.side_effect = SQLAlchemyError("disk full")

    with pytest.raises(ServiceException):
        with service.transaction():
            pass

    service.db.rollback.assert_called_once()


def test_transaction_reraises_other_errors_after_rollback(service):
    with pytest.raises(KeyError):
        with service.transaction():
            raise KeyError("missing")

    service.db.commit.assert_not_called()
    service.db.rollback.assert_called_once()
