"""Patient lookup keyed on email, scoped to one tenant."""

import logging
import re
from typing import Optional

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.errors import ResourceNotFound, ValidationError
from dental_scheduler.core.scheduling.requests import EMAIL_PATTERN
from dental_scheduler.core.scheduling.store import StoreTransaction, run_transaction
from dental_scheduler.core.scheduling.tenants import TenantResolver
from dental_scheduler.core.scheduling.types import PatientInfo

logger = logging.getLogger(__name__)

# Names given to patients created from a chat booking until staff complete them
PLACEHOLDER_FIRST_NAME = "Patient"
PLACEHOLDER_LAST_NAME = "Name"

_EMAIL_RE = re.compile(EMAIL_PATTERN)


async def find_or_create_patient(
    tx: StoreTransaction,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> PatientInfo:
    """
    Return the patient with this email, creating a minimal record if needed.

    Runs inside the caller's transaction so a failed booking does not leave
    an orphan patient behind.
    """
    patient = await tx.find_patient_by_email(email)
    if patient is not None:
        return patient

    patient = await tx.create_patient(
        email=email,
        first_name=first_name or PLACEHOLDER_FIRST_NAME,
        last_name=last_name or PLACEHOLDER_LAST_NAME,
        phone=phone,
    )
    logger.info(f"Created patient {patient.id} for {email}")
    return patient


class PatientDirectory:
    """Read-side patient lookups."""

    def __init__(self, tenant_resolver: TenantResolver, transaction_timeout: Optional[float] = None):
        self._tenants = tenant_resolver
        self._timeout = transaction_timeout or settings.transaction_timeout_seconds

    async def find_by_email(self, tenant_id: str, email: str) -> PatientInfo:
        """
        Look a patient up by email.

        Raises:
            ValidationError: Malformed email
            ResourceNotFound: No patient with this email in the cabinet
        """
        email = email.strip().lower()
        if not _EMAIL_RE.match(email):
            raise ValidationError("Invalid email address", {"patient_email": "invalid email"})

        tenant = await self._tenants.resolve(tenant_id)

        async def lookup(tx):
            return await tx.find_patient_by_email(email)

        patient = await run_transaction(tenant.store, lookup, self._timeout)
        if patient is None:
            raise ResourceNotFound("patient", email)
        return patient
