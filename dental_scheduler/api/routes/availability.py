"""
Availability Endpoint.

Advisory slot listing; a slot can still be taken before it is booked.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from dental_scheduler.api.dependencies import Services, get_services, get_tenant_id
from dental_scheduler.core.scheduling.types import TimeWindow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get(
    "",
    response_model=dict,
    summary="List bookable slots",
    description="Free slots for one date, sorted by start time across practitioners.",
)
async def check_availability(
    date: str = Query(..., description="Date (YYYY-MM-DD)", examples=["2024-01-15"]),
    service_type: str = Query(..., description="Requested service", examples=["cleaning"]),
    practitioner_id: Optional[str] = Query(default=None),
    time_window: Optional[TimeWindow] = Query(default=None),
    timezone: Optional[str] = Query(default=None, description="IANA timezone"),
    tenant_id: str = Depends(get_tenant_id),
    services: Services = Depends(get_services),
) -> dict:
    """Compute availability for a tenant."""
    result = await services.availability.check_availability(
        tenant_id=tenant_id,
        date=date,
        service_type=service_type,
        practitioner_id=practitioner_id,
        time_window=time_window.value if time_window else None,
        timezone=timezone,
    )
    logger.debug(f"{len(result.slots)} slots for {tenant_id} on {date}")
    return result.to_dict()
