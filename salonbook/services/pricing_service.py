"""Amount breakdown calculations for appointment payments."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import internal_error, validation_error
from ..models.appointment import Appointment, LocationType
from ..repositories.factory import RepositoryFactory
from ..repositories.salon_repository import SalonRepository
from .base import BaseService

CENT = Decimal("0.01")
Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class AmountBreakdown:
    """Payment amount split into its components, in major currency units."""

    total: Decimal
    services: Decimal
    home_service_fee: Decimal
    platform_fee: Decimal
    tax: Decimal

    def as_dict(self) -> Dict[str, Decimal]:
        return {
            "total": self.total,
            "services": self.services,
            "home_service_fee": self.home_service_fee,
            "platform_fee": self.platform_fee,
            "tax": self.tax,
        }


def _to_decimal(value: Number) -> Decimal:
    try:
        # str() keeps floats like 0.1 from dragging binary noise in
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise validation_error(f"Invalid amount value: {value!r}") from exc


def _round_to_cent(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _percent_of(base: Decimal, pct: Number) -> Decimal:
    return _round_to_cent(base * _to_decimal(pct) / Decimal(100))


def compute_amount(
    location_type: Union[LocationType, str],
    service_prices: Iterable[Number],
    platform_commission_pct: Number,
    home_service_fee_pct: Number,
    tax_pct: Number = 0,
) -> AmountBreakdown:
    """
    Derive the amount breakdown for an appointment.

    Every component is rounded half-up to 0.01 and ``total`` is the exact
    sum of the rounded components. No hidden state: identical inputs always
    produce identical output.
    """
    prices = [_to_decimal(price) for price in service_prices]
    if any(price < 0 for price in prices):
        raise validation_error("Service prices must be non-negative")
    for name, pct in (
        ("platform_commission_pct", platform_commission_pct),
        ("home_service_fee_pct", home_service_fee_pct),
        ("tax_pct", tax_pct),
    ):
        if _to_decimal(pct) < 0:
            raise validation_error(f"{name} must be non-negative")

    services = _round_to_cent(sum(prices, Decimal("0")))
    is_home = LocationType(location_type) is LocationType.HOME
    home_service_fee = _percent_of(services, home_service_fee_pct) if is_home else Decimal("0.00")
    platform_fee = _percent_of(services, platform_commission_pct)
    tax = _percent_of(services + home_service_fee + platform_fee, tax_pct)
    total = services + home_service_fee + platform_fee + tax

    return AmountBreakdown(
        total=total,
        services=services,
        home_service_fee=home_service_fee,
        platform_fee=platform_fee,
        tax=tax,
    )


class PricingService(BaseService):
    """Compute payment amounts for appointments from the salon catalog."""

    def __init__(
        self,
        db: Session,
        salon_repository: Optional[SalonRepository] = None,
        config: Optional[Settings] = None,
    ) -> None:
        super().__init__(db)
        self.salon_repository = salon_repository or RepositoryFactory.create_salon_repository(db)
        self.config = config or default_settings

    @BaseService.measure_operation("pricing.compute_for_appointment")
    def compute_for_appointment(self, appointment: Appointment) -> AmountBreakdown:
        service_ids = list(appointment.service_ids or [])
        services = self.salon_repository.get_services(appointment.salon_id, service_ids)
        missing = [service_id for service_id in service_ids if service_id not in services]
        if missing:
            # Services were validated at booking time; losing them now is a data problem
            raise internal_error(
                "Appointment references services that no longer exist",
                details={"appointment_id": appointment.id, "missing_service_ids": missing},
            )

        return compute_amount(
            appointment.location_type,
            [services[service_id].price for service_id in service_ids],
            self.config.platform_commission_pct,
            self.config.home_service_fee_pct,
            self.config.tax_pct,
        )
