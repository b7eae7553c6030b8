"""
Availability calculation.

compute_slots() is a pure function of opening hours, practitioners and a
snapshot of booked intervals. AvailabilityService gathers that snapshot in
one read transaction, then computes. Results are advisory: conflict
freedom is enforced by the booking manager, not here.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.requests import CheckAvailabilityRequest, validate_request
from dental_scheduler.core.scheduling.store import run_transaction
from dental_scheduler.core.scheduling.tenants import TenantResolver
from dental_scheduler.core.scheduling.timeutils import (
    _utcnow,
    day_bounds_utc,
    format_minutes,
    intersects,
    local_to_utc,
    parse_date,
    parse_hhmm_minutes,
    resolve_timezone,
    weekday_name,
)
from dental_scheduler.core.scheduling.types import (
    AvailabilityResult,
    BookedInterval,
    PractitionerInfo,
    Slot,
    TimeWindow,
)

logger = logging.getLogger(__name__)

NOON = 12 * 60
EVENING_START = 18 * 60


def clip_to_window(
    open_minute: int,
    close_minute: int,
    time_window: Optional[TimeWindow],
) -> Optional[tuple[int, int]]:
    """Intersect [open, close) with a part of the day.

    Returns:
        Clipped (start, end) in minutes, or None when empty
    """
    start, end = open_minute, close_minute
    if time_window == TimeWindow.MORNING:
        end = min(end, NOON)
    elif time_window == TimeWindow.AFTERNOON:
        start = max(start, NOON)
        end = min(end, EVENING_START)
    elif time_window == TimeWindow.EVENING:
        start = max(start, EVENING_START)

    if start >= end:
        return None
    return start, end


def practitioner_hours(
    practitioner: PractitionerInfo,
    opening: tuple[int, int],
    weekday: str,
) -> Optional[tuple[int, int]]:
    """Narrow cabinet opening hours by the practitioner's own schedule.

    A practitioner without a schedule entry for the weekday works the
    cabinet's hours; an entry set to null is a day off.
    """
    open_minute, close_minute = opening
    schedule = practitioner.schedule or {}
    if weekday in schedule:
        day = schedule[weekday]
        if not day or not day.get("open") or not day.get("close"):
            return None
        open_minute = max(open_minute, parse_hhmm_minutes(day["open"]))
        close_minute = min(close_minute, parse_hhmm_minutes(day["close"]))

    if open_minute >= close_minute:
        return None
    return open_minute, close_minute


def compute_slots(
    day: date,
    tz: ZoneInfo,
    business_hours: Optional[dict[str, str]],
    practitioners: list[PractitionerInfo],
    booked: list[BookedInterval],
    time_window: Optional[TimeWindow] = None,
    slot_minutes: int = 30,
    now: Optional[datetime] = None,
) -> list[Slot]:
    """
    Enumerate free slots for one local date.

    Args:
        day: Local calendar date
        tz: Cabinet (or caller) timezone
        business_hours: {"open": "HH:MM", "close": "HH:MM"} or None when closed
        practitioners: Candidate practitioners
        booked: Active appointment intervals of those practitioners
        time_window: Optional part-of-day restriction
        slot_minutes: Slot length and step
        now: Current time; slots ending before it are dropped when day is today

    Returns:
        Slots sorted by start time across all practitioners
    """
    if not business_hours:
        return []

    opening = (
        parse_hhmm_minutes(business_hours["open"]),
        parse_hhmm_minutes(business_hours["close"]),
    )
    weekday = weekday_name(day)
    is_today = now is not None and now.astimezone(tz).date() == day
    step = timedelta(minutes=slot_minutes)

    booked_by_practitioner: dict[str, list[BookedInterval]] = defaultdict(list)
    for interval in booked:
        booked_by_practitioner[interval.practitioner_id].append(interval)

    slots: list[Slot] = []
    for practitioner in practitioners:
        hours = practitioner_hours(practitioner, opening, weekday)
        if hours is None:
            continue
        window = clip_to_window(*hours, time_window)
        if window is None:
            continue

        taken = booked_by_practitioner[practitioner.id]
        minute, end_minute = window
        while minute + slot_minutes <= end_minute:
            local_start, utc_start = local_to_utc(day, time(minute // 60, minute % 60), tz)
            utc_end = utc_start + step
            minute += slot_minutes

            if any(intersects(utc_start, utc_end, b.start_utc, b.end_utc) for b in taken):
                continue
            if is_today and utc_end <= now:
                continue

            slots.append(
                Slot(
                    practitioner_id=practitioner.id,
                    practitioner_name=practitioner.name,
                    start_time=local_start,
                    end_time=utc_end.astimezone(tz),
                    duration_minutes=slot_minutes,
                )
            )

    slots.sort(key=lambda slot: slot.start_time)
    return slots


class AvailabilityService:
    """
    Availability queries against a tenant's store.

    Practitioners are not filtered by specialization unless
    filter_by_specialization is enabled; the service type is then matched
    against each practitioner's specialization.
    """

    def __init__(
        self,
        tenant_resolver: TenantResolver,
        slot_minutes: Optional[int] = None,
        filter_by_specialization: bool = False,
        transaction_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._tenants = tenant_resolver
        self._slot_minutes = slot_minutes or settings.slot_duration_minutes
        self._filter_by_specialization = filter_by_specialization
        self._timeout = transaction_timeout or settings.transaction_timeout_seconds
        self._clock = clock

    async def check_availability(
        self,
        tenant_id: str,
        date: str,
        service_type: str,
        practitioner_id: Optional[str] = None,
        time_window: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Compute bookable slots for a date.

        Returns:
            AvailabilityResult; empty slots and hours when the cabinet is closed

        Raises:
            ValidationError: Malformed arguments
            ResourceNotFound: Unknown tenant
            InternalError: Store failure or timeout
        """
        request = validate_request(
            CheckAvailabilityRequest,
            date=date,
            service_type=service_type,
            practitioner_id=practitioner_id,
            time_window=time_window,
            timezone=timezone,
        )
        tenant = await self._tenants.resolve(tenant_id)
        tz = resolve_timezone(request.timezone or tenant.timezone)
        day = parse_date(request.date)

        hours = tenant.hours_for(weekday_name(day))
        if hours is None:
            logger.debug(f"Cabinet {tenant.tenant_id} closed on {request.date}")
            return AvailabilityResult(date=request.date)

        day_start, day_end = day_bounds_utc(day, tz)
        specialization = (
            request.service_type
            if self._filter_by_specialization and not request.practitioner_id
            else None
        )

        async def snapshot(tx):
            practitioners = await tx.list_practitioners(
                practitioner_id=request.practitioner_id,
                specialization=specialization,
            )
            booked = await tx.list_active_intervals(
                [p.id for p in practitioners], day_start, day_end
            )
            return practitioners, booked

        practitioners, booked = await run_transaction(tenant.store, snapshot, self._timeout)
        if request.practitioner_id and not practitioners:
            logger.info(f"Practitioner {request.practitioner_id} not found or inactive")

        slots = compute_slots(
            day=day,
            tz=tz,
            business_hours=hours,
            practitioners=practitioners,
            booked=booked,
            time_window=request.time_window,
            slot_minutes=self._slot_minutes,
            now=self._clock(),
        )
        return AvailabilityResult(
            date=request.date,
            slots=slots,
            business_hours={
                "open": format_minutes(parse_hhmm_minutes(hours["open"])),
                "close": format_minutes(parse_hhmm_minutes(hours["close"])),
            },
        )
