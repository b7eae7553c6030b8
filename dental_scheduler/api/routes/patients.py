"""
Patient Endpoints.

Email lookup for cabinet staff, e.g. to confirm a caller is already
registered before booking on their behalf.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from dental_scheduler.api.dependencies import (
    Services,
    get_current_user,
    get_services,
    get_tenant_id,
)
from dental_scheduler.api.routes.appointments import ERROR_RESPONSES, ErrorResponse
from dental_scheduler.core.dialogue.security import ADMIN_ROLES, STAFF_ROLES
from dental_scheduler.core.intelligence.session.models import ChatUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"])


@router.get(
    "",
    response_model=dict,
    summary="Find a patient by email",
    responses={
        403: {"model": ErrorResponse, "description": "Caller is not staff of this cabinet"},
        404: {"model": ErrorResponse, "description": "Tenant or patient not found"},
        422: ERROR_RESPONSES[422],
    },
)
async def find_patient(
    email: str = Query(..., description="Patient email (case-insensitive)"),
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Patient record of this cabinet."""
    allowed = user.role in ADMIN_ROLES or (
        user.role in STAFF_ROLES and tenant_id in user.assigned_cabinets
    )
    if not allowed:
        logger.warning(f"Patient lookup denied for {user.user_id} ({user.role}) on {tenant_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient lookup is restricted to cabinet staff",
        )

    patient = await services.patients.find_by_email(tenant_id, email)
    return patient.to_dict()
