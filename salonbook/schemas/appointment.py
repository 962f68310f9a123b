# salonbook/schemas/appointment.py
"""
Appointment schemas for the SalonBook API.

Request bodies are strict (unknown fields rejected). Datetimes without an
offset are interpreted as UTC by the services.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from ..models.appointment import AppointmentStatus, LocationType
from ._strict_base import StrictModel, StrictRequestModel


class AvailabilityCheckRequest(StrictRequestModel):
    salon_id: str = Field(..., min_length=1, description="Salon to check")
    barber_id: Optional[str] = Field(None, description="Specific barber, if any")
    scheduled_at: datetime = Field(..., description="Candidate start instant")
    duration: int = Field(..., description="Duration in minutes")


class AvailabilityCheckResponse(StrictModel):
    available: bool


class AppointmentCreate(StrictRequestModel):
    """Book one or more services of a salon at a given instant."""

    salon_id: str = Field(..., min_length=1, description="Salon to book")
    service_ids: List[str] = Field(..., min_length=1, description="Services, in order")
    scheduled_at: datetime = Field(..., description="Start instant")
    location_type: LocationType = Field(..., description="Salon or home visit")
    barber_id: Optional[str] = Field(None, description="Preferred barber")
    notes: Optional[str] = Field(None, max_length=500, description="Note for the salon")

    @field_validator("service_ids")
    @classmethod
    def _no_blank_ids(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("service_ids must not contain blank values")
        return cleaned


class AppointmentStatusUpdate(StrictRequestModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentCancelRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AppointmentResponse(StrictModel):
    id: str
    customer_id: str
    salon_id: str
    barber_id: Optional[str] = None
    service_ids: List[str]
    scheduled_at: datetime
    duration_minutes: int
    end_at: datetime
    location_type: LocationType
    status: AppointmentStatus
    notes: Optional[str] = None
    hold_started_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class AppointmentStatisticsResponse(StrictModel):
    salon_id: str
    total: int
    upcoming: int
    by_status: Dict[str, int]
