from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from workflow_api.events import CamundaEventSubscriber
from workflow_api.services import AuditService, NotificationService, TaskArchiver

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def notifications():
    return MagicMock(spec=NotificationService)


@pytest.fixture
def audit():
    return MagicMock(spec=AuditService)


@pytest.fixture
def archiver():
    return MagicMock(spec=TaskArchiver)


@pytest.fixture
def subscriber(notifications, audit, archiver):
    return CamundaEventSubscriber(
        notification_service=notifications, audit_service=audit, archiver=archiver, clock=lambda: NOW
    )


@pytest.fixture
def engine():
    return MagicMock()
