# salonbook/routes/v1/appointments.py
"""
Appointment routes - API v1

Versioned appointment endpoints under /api/v1/appointments.
All business logic delegated to AppointmentService.

Endpoints:
    POST /check-availability - Check if a time range is free
    POST / - Book services (appointment starts pending, holding its slot)
    GET / - My appointments with status filter and pagination
    GET /upcoming - My pending/confirmed appointments from now on
    GET /salon/{salon_id} - Salon appointment list (salon staff and admins)
    GET /salon/{salon_id}/statistics - Salon appointment counts
    GET /{appointment_id} - Appointment details
    PATCH /{appointment_id}/status - Move an appointment through its lifecycle
    POST /{appointment_id}/cancel - Cancel (refunds a captured payment first)
"""

import asyncio
from datetime import datetime
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ...api.dependencies import get_appointment_service, get_current_actor, get_current_customer
from ...models.appointment import AppointmentStatus
from ...principal import Actor
from ...schemas.appointment import (
    AppointmentCancelRequest,
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatisticsResponse,
    AppointmentStatusUpdate,
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
)
from ...schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaginatedResponse
from ...services.appointment_service import AppointmentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["appointments-v1"])


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post("/check-availability", response_model=AvailabilityCheckResponse)
async def check_availability(
    request: AvailabilityCheckRequest,
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AvailabilityCheckResponse:
    """Check whether a salon (or one of its barbers) is free for a time range."""
    available = await asyncio.to_thread(
        appointment_service.check_availability,
        request.salon_id,
        request.barber_id,
        request.scheduled_at,
        request.duration,
    )
    return AvailabilityCheckResponse(available=available)


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    current_actor: Actor = Depends(get_current_customer),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Book services at a salon. The slot is held while payment is collected."""
    appointment = await asyncio.to_thread(
        appointment_service.create_appointment, current_actor.id, appointment_data
    )
    return AppointmentResponse.model_validate(appointment)


@router.get("", response_model=PaginatedResponse[AppointmentResponse])
async def list_my_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> PaginatedResponse[AppointmentResponse]:
    items, total, page, per_page = await asyncio.to_thread(
        appointment_service.list_customer_appointments,
        current_actor.id,
        status_filter,
        page,
        per_page,
    )
    return PaginatedResponse[AppointmentResponse].build(
        [AppointmentResponse.model_validate(item) for item in items], total, page, per_page
    )


@router.get("/upcoming", response_model=List[AppointmentResponse])
async def list_upcoming_appointments(
    limit: int = Query(10, ge=1, le=50),
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> List[AppointmentResponse]:
    appointments = await asyncio.to_thread(
        appointment_service.list_upcoming_appointments, current_actor.id, limit
    )
    return [AppointmentResponse.model_validate(item) for item in appointments]


# ============================================================================
# SECTION 2: Salon-side routes
# ============================================================================


@router.get("/salon/{salon_id}", response_model=PaginatedResponse[AppointmentResponse])
async def list_salon_appointments(
    salon_id: str,
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    barber_id: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> PaginatedResponse[AppointmentResponse]:
    items, total, page, per_page = await asyncio.to_thread(
        lambda: appointment_service.list_salon_appointments(
            salon_id,
            current_actor,
            status=status_filter,
            barber_id=barber_id,
            date_from=date_from,
            date_to=date_to,
            page=page,
            per_page=per_page,
        )
    )
    return PaginatedResponse[AppointmentResponse].build(
        [AppointmentResponse.model_validate(item) for item in items], total, page, per_page
    )


@router.get("/salon/{salon_id}/statistics", response_model=AppointmentStatisticsResponse)
async def get_salon_statistics(
    salon_id: str,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentStatisticsResponse:
    stats = await asyncio.to_thread(
        appointment_service.get_salon_statistics, salon_id, current_actor, date_from, date_to
    )
    return AppointmentStatisticsResponse(**stats)


# ============================================================================
# SECTION 3: Appointment-specific routes
# ============================================================================


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    appointment = await asyncio.to_thread(
        appointment_service.get_appointment, appointment_id, current_actor
    )
    return AppointmentResponse.model_validate(appointment)


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    update_data: AppointmentStatusUpdate,
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Progress, complete or no-show an appointment. Cancelling refunds as usual."""
    appointment = await asyncio.to_thread(
        appointment_service.update_status,
        appointment_id,
        update_data.status,
        current_actor,
        update_data.reason,
    )
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    cancel_data: AppointmentCancelRequest,
    current_actor: Actor = Depends(get_current_actor),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    appointment = await asyncio.to_thread(
        appointment_service.cancel_appointment, appointment_id, current_actor, cancel_data.reason
    )
    return AppointmentResponse.model_validate(appointment)
