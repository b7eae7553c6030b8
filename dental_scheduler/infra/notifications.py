"""
Notification Dispatcher

Queues appointment emails (confirmation, reminders, cancellation,
reschedule) for an out-of-process sender. Jobs are JSON documents:

- immediate jobs: LPUSH onto per-priority lists
  dental:v1:notifications:{priority}
- scheduled jobs: ZADD into dental:v1:notifications:scheduled scored by
  fire time (epoch seconds)

Delivery is at-least-once; consumers retry up to max_retries.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from redis.exceptions import RedisError

from dental_scheduler.infra.redis import get_redis, redis_key

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class NotificationError(Exception):
    """Raised when a notification job cannot be queued."""
    pass


class NotificationType(str, Enum):
    """Kinds of appointment notifications."""

    CONFIRMATION = "appointment_confirmation"
    REMINDER = "appointment_reminder"
    CANCELLATION = "appointment_cancellation"
    RESCHEDULE = "appointment_reschedule"


class NotificationPriority(str, Enum):
    """Queue priorities."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


@dataclass
class NotificationParams:
    """Template data for one appointment notification."""

    tenant_id: str
    appointment_id: str
    recipient_email: str
    date: str
    time: str
    service_type: str
    practitioner_name: Optional[str] = None
    cabinet_name: Optional[str] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    hours_before: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, excluding None values."""
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class NotificationJob:
    """Queued notification."""

    type: NotificationType
    tenant_id: str
    recipient_email: str
    priority: NotificationPriority
    data: dict
    schedule_for: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    attempts: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=_utcnow)

    def to_json(self) -> str:
        """Serialize for the queue."""
        return json.dumps({
            "id": self.id,
            "type": self.type.value,
            "tenant_id": self.tenant_id,
            "recipient_email": self.recipient_email,
            "priority": self.priority.value,
            "data": self.data,
            "schedule_for": self.schedule_for.isoformat() if self.schedule_for else None,
            "attempts": self.attempts,
            "max_retries": self.max_retries,
            "created_at": self.created_at.isoformat(),
        })


class NotificationDispatcher(ABC):
    """
    Queues appointment notifications.

    Every method returns the queued job id and raises NotificationError
    when the job could not be queued.
    """

    @abstractmethod
    async def enqueue(self, job: NotificationJob) -> str:
        """Queue a prepared job."""

    async def queue_confirmation(
        self,
        params: NotificationParams,
        priority: NotificationPriority = NotificationPriority.HIGH,
    ) -> str:
        """Queue the booking confirmation email."""
        return await self.enqueue(self._job(NotificationType.CONFIRMATION, params, priority))

    async def queue_reminder(
        self,
        params: NotificationParams,
        fire_at: datetime,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> str:
        """Queue a reminder to be sent at fire_at."""
        return await self.enqueue(
            self._job(NotificationType.REMINDER, params, priority, schedule_for=fire_at)
        )

    async def queue_cancellation(
        self,
        params: NotificationParams,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> str:
        """Queue the cancellation notice."""
        return await self.enqueue(self._job(NotificationType.CANCELLATION, params, priority))

    async def queue_reschedule(
        self,
        params: NotificationParams,
        priority: NotificationPriority = NotificationPriority.HIGH,
    ) -> str:
        """Queue the notice that an appointment moved."""
        return await self.enqueue(self._job(NotificationType.RESCHEDULE, params, priority))

    @staticmethod
    def _job(
        kind: NotificationType,
        params: NotificationParams,
        priority: NotificationPriority,
        schedule_for: Optional[datetime] = None,
    ) -> NotificationJob:
        return NotificationJob(
            type=kind,
            tenant_id=params.tenant_id,
            recipient_email=params.recipient_email,
            priority=NotificationPriority(priority),
            data=params.to_dict(),
            schedule_for=schedule_for,
        )


class RedisNotificationDispatcher(NotificationDispatcher):
    """Redis-backed queue shared with the email worker."""

    SCHEDULED_KEY = redis_key("notifications", "scheduled")

    def _queue_key(self, priority: NotificationPriority) -> str:
        return redis_key("notifications", priority.value)

    async def enqueue(self, job: NotificationJob) -> str:
        redis = await get_redis()
        if redis is None:
            raise NotificationError(f"Redis unavailable, {job.type.value} not queued")

        try:
            if job.schedule_for is not None:
                await redis.zadd(
                    self.SCHEDULED_KEY,
                    {job.to_json(): job.schedule_for.timestamp()},
                )
            else:
                await redis.lpush(self._queue_key(job.priority), job.to_json())
        except RedisError as e:
            raise NotificationError(f"Failed to queue {job.type.value}: {e}") from e

        logger.debug(f"Queued {job.type.value} job {job.id} for appointment {job.data.get('appointment_id')}")
        return job.id


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Keeps jobs in a list. For local development and tests."""

    def __init__(self):
        self.jobs: list[NotificationJob] = []

    async def enqueue(self, job: NotificationJob) -> str:
        self.jobs.append(job)
        return job.id
