"""
Shared fixtures for the SalonBook test suite.

Every test gets its own in-memory SQLite database seeded with one salon, a
small service catalog and two staff members.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salonbook.api.dependencies import get_db, get_payment_gateway
from salonbook.core.config import Settings
from salonbook.core.enums import RoleName
from salonbook.database import init_db
from salonbook.integrations.fake_gateway import FakePaymentGateway
from salonbook.main import app
from salonbook.models.appointment import Appointment, LocationType
from salonbook.models.payment import Payment, PaymentMethod
from salonbook.principal import Actor
from salonbook.schemas.appointment import AppointmentCreate
from salonbook.services.payment_service import PaymentService
from tests.helpers.auth import auth_headers_for
from tests.helpers.salon_data import (
    BARBER_ID,
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    OWNER_ID,
    RECEPTIONIST_ID,
    SeededSalon,
    seed_salon,
)


@pytest.fixture
def test_settings() -> Settings:
    """Deterministic settings; no .env file, instant retries."""
    return Settings(
        _env_file=None,
        environment="test",
        platform_commission_pct=15,
        home_service_fee_pct=10,
        tax_pct=0,
        slot_hold_minutes=15,
        gateway_retry_attempts=3,
        gateway_retry_backoff_seconds=0,
    )


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    """Create a new database session for each test."""
    session = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db: Session) -> SeededSalon:
    return seed_salon(db)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def payment_service(db: Session, gateway: FakePaymentGateway, test_settings: Settings):
    return PaymentService(db, gateway=gateway, config=test_settings, sleep=lambda _: None)


@pytest.fixture
def appointment_service(payment_service: PaymentService):
    return payment_service.appointment_service


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(second=0, microsecond=0)


@pytest.fixture
def slot_start(now: datetime) -> datetime:
    """10:00 UTC tomorrow-or-later; always in the future."""
    return (now + timedelta(days=2)).replace(hour=10, minute=0)


# Actors


@pytest.fixture
def customer() -> Actor:
    return Actor(id=CUSTOMER_ID, role=RoleName.CUSTOMER)


@pytest.fixture
def other_customer() -> Actor:
    return Actor(id=OTHER_CUSTOMER_ID, role=RoleName.CUSTOMER)


@pytest.fixture
def owner() -> Actor:
    return Actor(id=OWNER_ID, role=RoleName.SALON_OWNER)


@pytest.fixture
def barber() -> Actor:
    return Actor(id=BARBER_ID, role=RoleName.BARBER)


@pytest.fixture
def receptionist() -> Actor:
    return Actor(id=RECEPTIONIST_ID, role=RoleName.RECEPTIONIST)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin_1", role=RoleName.SUPERADMIN)


# HTTP


@pytest.fixture
def client(db: Session, gateway: FakePaymentGateway):
    """Create a test client with the test database and the in-memory gateway."""

    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def customer_headers() -> Dict[str, str]:
    return auth_headers_for(CUSTOMER_ID, RoleName.CUSTOMER)


@pytest.fixture
def owner_headers() -> Dict[str, str]:
    return auth_headers_for(OWNER_ID, RoleName.SALON_OWNER)


# Booking helpers


@pytest.fixture
def book(appointment_service, seeded: SeededSalon, slot_start: datetime):
    """Factory creating a pending appointment (haircut with barber 1 by default)."""

    def _book(
        customer_id: str = CUSTOMER_ID,
        *,
        start: Optional[datetime] = None,
        service_ids: Optional[List[str]] = None,
        barber_id: Optional[str] = BARBER_ID,
        location_type: LocationType = LocationType.SALON,
        now: Optional[datetime] = None,
    ) -> Appointment:
        data = AppointmentCreate(
            salon_id=seeded.salon.id,
            service_ids=service_ids or [seeded.haircut.id],
            scheduled_at=start or slot_start,
            barber_id=barber_id,
            location_type=location_type,
        )
        return appointment_service.create_appointment(customer_id, data, now=now)

    return _book


@pytest.fixture
def pay(payment_service: PaymentService, gateway: FakePaymentGateway):
    """Factory running initiate, checkout and verify for an appointment."""

    def _pay(appointment: Appointment, method: PaymentMethod = PaymentMethod.UPI) -> Payment:
        payment = payment_service.initiate_payment(appointment.customer_id, appointment.id, method)
        gateway_payment_id, signature = gateway.simulate_capture(payment.gateway_order_id)
        return payment_service.verify_payment(
            appointment.customer_id, payment.gateway_order_id, gateway_payment_id, signature
        )

    return _pay
