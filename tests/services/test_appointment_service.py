"""
Tests for AppointmentService.

Covers booking validation, the status state machine, who may drive it,
cancellation with refunds and the abandoned-hold sweep.
"""

from datetime import timedelta
from decimal import Decimal

from salonbook.core.enums import RoleName
from salonbook.core.exceptions import ErrorKind
from salonbook.core.time_range import ensure_utc
from salonbook.models.appointment import AppointmentStatus, LocationType
from salonbook.models.payment import PaymentStatus
from salonbook.principal import SYSTEM_ACTOR, Actor
from salonbook.schemas.appointment import AppointmentCreate
from salonbook.services.appointment_service import HOLD_EXPIRED_REASON, ConfirmationOutcome
from tests.helpers.assertions import raises_domain
from tests.helpers.salon_data import (
    BARBER_ID,
    CUSTOMER_ID,
    OTHER_BARBER_ID,
    OTHER_CUSTOMER_ID,
    insert_appointment,
)


class TestCreateAppointment:
    def test_creates_pending_appointment_holding_its_slot(self, book, seeded, slot_start, now):
        appointment = book(service_ids=[seeded.haircut.id, seeded.beard.id], now=now)

        assert appointment.status == AppointmentStatus.PENDING.value
        assert appointment.customer_id == CUSTOMER_ID
        assert appointment.duration_minutes == 45
        assert ensure_utc(appointment.end_at) == slot_start + timedelta(minutes=45)
        assert ensure_utc(appointment.hold_started_at) == now
        assert appointment.service_ids == [seeded.haircut.id, seeded.beard.id]

    def test_live_hold_blocks_second_booking(self, book, slot_start):
        book()
        with raises_domain(ErrorKind.CONFLICT, "APPOINTMENT_UNAVAILABLE"):
            book(OTHER_CUSTOMER_ID, start=slot_start + timedelta(minutes=15))

    def test_touching_slot_is_bookable(self, book, slot_start):
        book()
        second = book(OTHER_CUSTOMER_ID, start=slot_start + timedelta(minutes=30))
        assert second.status == AppointmentStatus.PENDING.value

    def test_other_barber_can_take_same_slot(self, book):
        book()
        assert book(OTHER_CUSTOMER_ID, barber_id=OTHER_BARBER_ID).barber_id == OTHER_BARBER_ID

    def test_expired_hold_does_not_block(self, book, now):
        book(now=now - timedelta(minutes=20))
        second = book(OTHER_CUSTOMER_ID, now=now)
        assert second.status == AppointmentStatus.PENDING.value

    def test_past_start_rejected(self, book, now):
        with raises_domain(ErrorKind.VALIDATION, "START_IN_PAST"):
            book(start=now - timedelta(hours=2))

    def test_unknown_salon(self, appointment_service, seeded, slot_start):
        data = AppointmentCreate(
            salon_id="missing",
            service_ids=[seeded.haircut.id],
            scheduled_at=slot_start,
            location_type=LocationType.SALON,
        )
        with raises_domain(ErrorKind.NOT_FOUND):
            appointment_service.create_appointment(CUSTOMER_ID, data)

    def test_inactive_salon(self, book, db, seeded):
        seeded.salon.is_active = False
        db.commit()
        with raises_domain(ErrorKind.VALIDATION, "SALON_INACTIVE"):
            book()

    def test_duplicate_services(self, book, seeded):
        with raises_domain(ErrorKind.VALIDATION, "DUPLICATE_SERVICES"):
            book(service_ids=[seeded.haircut.id, seeded.haircut.id])

    def test_unknown_or_inactive_services(self, book, db, seeded):
        with raises_domain(ErrorKind.VALIDATION, "INVALID_SERVICES") as exc_info:
            book(service_ids=[seeded.haircut.id, "not-a-service"])
        assert exc_info.value.details["service_ids"] == ["not-a-service"]

        seeded.beard.is_active = False
        db.commit()
        with raises_domain(ErrorKind.VALIDATION, "INVALID_SERVICES"):
            book(service_ids=[seeded.beard.id])

    def test_home_service_requires_salon_support(self, book, db, seeded):
        assert book(location_type=LocationType.HOME).location_type == LocationType.HOME.value

        seeded.salon.offers_home_service = False
        db.commit()
        with raises_domain(ErrorKind.VALIDATION, "HOME_SERVICE_UNAVAILABLE"):
            book(OTHER_CUSTOMER_ID, barber_id=OTHER_BARBER_ID, location_type=LocationType.HOME)

    def test_barber_must_work_at_salon(self, book):
        with raises_domain(ErrorKind.VALIDATION, "BARBER_NOT_AVAILABLE"):
            book(barber_id="stranger")

    def test_salon_scope_when_no_barber(self, book):
        book(barber_id=None)
        with raises_domain(ErrorKind.CONFLICT):
            book(OTHER_CUSTOMER_ID, barber_id=None)


class TestCheckAvailability:
    def test_reports_taken_and_free_slots(self, appointment_service, book, seeded, slot_start):
        book()
        salon_id = seeded.salon.id
        assert not appointment_service.check_availability(salon_id, BARBER_ID, slot_start, 30)
        assert appointment_service.check_availability(salon_id, OTHER_BARBER_ID, slot_start, 30)

    def test_unknown_salon(self, appointment_service, slot_start):
        with raises_domain(ErrorKind.NOT_FOUND):
            appointment_service.check_availability("missing", None, slot_start, 30)


class TestUpdateStatus:
    def test_full_lifecycle_by_assigned_barber(
        self, appointment_service, book, pay, barber, slot_start
    ):
        appointment = book()
        pay(appointment)

        started = appointment_service.update_status(
            appointment.id, AppointmentStatus.IN_PROGRESS, barber
        )
        assert started.status == AppointmentStatus.IN_PROGRESS.value
        assert started.started_at is not None

        completed = appointment_service.update_status(
            appointment.id, AppointmentStatus.COMPLETED, barber
        )
        assert completed.status == AppointmentStatus.COMPLETED.value
        assert completed.completed_at is not None

        with raises_domain(ErrorKind.VALIDATION, "INVALID_TRANSITION"):
            appointment_service.update_status(
                appointment.id, AppointmentStatus.IN_PROGRESS, barber
            )

    def test_confirmation_is_reserved_for_settlement(self, appointment_service, book, owner):
        appointment = book()
        with raises_domain(ErrorKind.FORBIDDEN, "CONFIRMATION_RESERVED"):
            appointment_service.update_status(appointment.id, AppointmentStatus.CONFIRMED, owner)

    def test_pending_cannot_start(self, appointment_service, book, owner):
        appointment = book()
        with raises_domain(ErrorKind.VALIDATION, "INVALID_TRANSITION") as exc_info:
            appointment_service.update_status(appointment.id, AppointmentStatus.IN_PROGRESS, owner)
        assert exc_info.value.details == {"from": "pending", "to": "in_progress"}

    def test_customer_cannot_drive_status(self, appointment_service, book, pay, customer):
        appointment = book()
        pay(appointment)
        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.update_status(
                appointment.id, AppointmentStatus.IN_PROGRESS, customer
            )

    def test_barber_limited_to_own_or_unassigned(
        self, appointment_service, book, pay, barber, slot_start
    ):
        theirs = book(barber_id=OTHER_BARBER_ID)
        pay(theirs)
        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.update_status(theirs.id, AppointmentStatus.IN_PROGRESS, barber)

        unassigned = book(OTHER_CUSTOMER_ID, barber_id=None, start=slot_start + timedelta(hours=2))
        pay(unassigned)
        moved = appointment_service.update_status(
            unassigned.id, AppointmentStatus.IN_PROGRESS, barber
        )
        assert moved.status == AppointmentStatus.IN_PROGRESS.value

    def test_receptionist_and_admin_have_salon_authority(
        self, appointment_service, book, pay, receptionist, admin, slot_start
    ):
        first = book()
        pay(first)
        second = book(OTHER_CUSTOMER_ID, start=slot_start + timedelta(hours=1))
        pay(second)

        assert (
            appointment_service.update_status(
                first.id, AppointmentStatus.IN_PROGRESS, receptionist
            ).status
            == AppointmentStatus.IN_PROGRESS.value
        )
        assert (
            appointment_service.update_status(second.id, AppointmentStatus.IN_PROGRESS, admin).status
            == AppointmentStatus.IN_PROGRESS.value
        )

    def test_owner_of_another_salon_is_forbidden(self, appointment_service, book, pay):
        appointment = book()
        pay(appointment)
        stranger = Actor(id="owner_elsewhere", role=RoleName.SALON_OWNER)
        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.update_status(
                appointment.id, AppointmentStatus.IN_PROGRESS, stranger
            )

    def test_no_show_only_after_start(self, appointment_service, book, pay, owner, slot_start):
        appointment = book()
        pay(appointment)

        with raises_domain(ErrorKind.VALIDATION, "NO_SHOW_TOO_EARLY"):
            appointment_service.update_status(appointment.id, AppointmentStatus.NO_SHOW, owner)

        marked = appointment_service.update_status(
            appointment.id,
            AppointmentStatus.NO_SHOW,
            owner,
            now=slot_start + timedelta(minutes=20),
        )
        assert marked.status == AppointmentStatus.NO_SHOW.value

    def test_cancelled_target_delegates_to_cancel(self, appointment_service, book, owner):
        appointment = book()
        cancelled = appointment_service.update_status(
            appointment.id, AppointmentStatus.CANCELLED, owner, reason="Barber sick"
        )
        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Barber sick"
        assert cancelled.cancelled_by_id == owner.id

    def test_unknown_appointment(self, appointment_service, owner):
        with raises_domain(ErrorKind.NOT_FOUND):
            appointment_service.update_status("missing", AppointmentStatus.IN_PROGRESS, owner)


class TestCancelAppointment:
    def test_customer_cancels_pending(self, appointment_service, book, customer):
        appointment = book()
        cancelled = appointment_service.cancel_appointment(appointment.id, customer, "Plans changed")

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancelled_by_id == CUSTOMER_ID
        assert cancelled.cancellation_reason == "Plans changed"
        assert cancelled.cancelled_at is not None

    def test_cancelled_slot_is_free_again(self, appointment_service, book, customer):
        appointment = book()
        appointment_service.cancel_appointment(appointment.id, customer, "Plans changed")
        assert book(OTHER_CUSTOMER_ID).status == AppointmentStatus.PENDING.value

    def test_reason_required(self, appointment_service, book, customer):
        appointment = book()
        with raises_domain(ErrorKind.VALIDATION):
            appointment_service.cancel_appointment(appointment.id, customer, "   ")

    def test_other_customer_cannot_cancel(self, appointment_service, book, other_customer):
        appointment = book()
        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.cancel_appointment(appointment.id, other_customer, "Nope")

    def test_confirmed_cancel_refunds_first(
        self, appointment_service, payment_service, book, pay, customer, gateway
    ):
        appointment = book()
        payment = pay(appointment)

        cancelled = appointment_service.cancel_appointment(appointment.id, customer, "Sick")

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        refunded = payment_service.payment_repository.get_by_id(payment.id)
        assert refunded.status == PaymentStatus.REFUNDED.value
        assert refunded.refund_amount == Decimal("345.00")
        assert refunded.refunded_by_id == CUSTOMER_ID
        assert refunded.refund_reason == "Appointment cancelled: Sick"
        assert len(gateway.refunds) == 1

    def test_refund_failure_keeps_appointment_confirmed(
        self, appointment_service, payment_service, book, pay, customer, gateway
    ):
        appointment = book()
        payment = pay(appointment)
        gateway.fail_next(3)

        with raises_domain(ErrorKind.EXTERNAL_SERVICE, "REFUND_FAILED"):
            appointment_service.cancel_appointment(appointment.id, customer, "Sick")

        current = appointment_service.get_appointment(appointment.id, customer)
        assert current.status == AppointmentStatus.CONFIRMED.value
        stored = payment_service.payment_repository.get_by_id(payment.id)
        assert stored.status == PaymentStatus.SUCCESSFUL.value
        assert stored.refund_claim is None

    def test_in_progress_appointment_cannot_be_cancelled(
        self, appointment_service, book, pay, owner, customer
    ):
        appointment = book()
        pay(appointment)
        appointment_service.update_status(appointment.id, AppointmentStatus.IN_PROGRESS, owner)

        with raises_domain(ErrorKind.VALIDATION, "INVALID_TRANSITION"):
            appointment_service.cancel_appointment(appointment.id, customer, "Too late")


class TestConfirmAfterPayment:
    def test_salon_is_locked_before_the_overlap_recheck(
        self, appointment_service, book, monkeypatch
    ):
        appointment = book()
        calls = []
        lock = appointment_service.salon_repository.lock_for_update
        find_conflicts = appointment_service.availability_service.find_conflicts

        def locking(salon_id):
            calls.append(("lock", salon_id))
            return lock(salon_id)

        def rechecking(salon_id, *args, **kwargs):
            calls.append(("recheck", salon_id))
            return find_conflicts(salon_id, *args, **kwargs)

        monkeypatch.setattr(appointment_service.salon_repository, "lock_for_update", locking)
        monkeypatch.setattr(appointment_service.availability_service, "find_conflicts", rechecking)

        with appointment_service.transaction():
            outcome = appointment_service.confirm_after_payment(appointment.id)

        assert outcome is ConfirmationOutcome.CONFIRMED
        assert calls == [("lock", appointment.salon_id), ("recheck", appointment.salon_id)]

    def test_appointment_closed_while_waiting_for_the_lock(
        self, appointment_service, book, monkeypatch
    ):
        appointment = book()
        lock = appointment_service.salon_repository.lock_for_update

        def locking_after_expiry(salon_id):
            # another transaction cancelled the hold before the lock was granted
            appointment_service.appointment_repository.transition_status(
                appointment.id,
                [AppointmentStatus.PENDING],
                AppointmentStatus.CANCELLED,
                cancellation_reason=HOLD_EXPIRED_REASON,
            )
            return lock(salon_id)

        monkeypatch.setattr(
            appointment_service.salon_repository, "lock_for_update", locking_after_expiry
        )

        with appointment_service.transaction():
            outcome = appointment_service.confirm_after_payment(appointment.id)

        assert outcome is ConfirmationOutcome.NOT_PENDING


class TestExpireStaleHolds:
    def test_cancels_only_lapsed_unpaid_holds(self, appointment_service, book, slot_start, now):
        stale = book(now=now - timedelta(minutes=30))
        fresh = book(OTHER_CUSTOMER_ID, start=slot_start + timedelta(hours=1), now=now)

        assert appointment_service.expire_stale_holds(now=now) == 1

        stale = appointment_service.get_appointment(stale.id, SYSTEM_ACTOR)
        assert stale.status == AppointmentStatus.CANCELLED.value
        assert stale.cancellation_reason == HOLD_EXPIRED_REASON
        assert stale.cancelled_by_id == "system"
        fresh = appointment_service.get_appointment(fresh.id, SYSTEM_ACTOR)
        assert fresh.status == AppointmentStatus.PENDING.value

        assert appointment_service.expire_stale_holds(now=now) == 0


class TestQueries:
    def test_get_appointment_visibility(
        self, appointment_service, book, customer, other_customer, barber
    ):
        appointment = book()
        assert appointment_service.get_appointment(appointment.id, customer).id == appointment.id
        assert appointment_service.get_appointment(appointment.id, barber).id == appointment.id
        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.get_appointment(appointment.id, other_customer)

    def test_customer_listing_and_upcoming(self, appointment_service, book, slot_start, customer):
        first = book()
        second = book(start=slot_start + timedelta(days=1))
        appointment_service.cancel_appointment(second.id, customer, "Changed mind")

        items, total, page, per_page = appointment_service.list_customer_appointments(CUSTOMER_ID)
        assert total == 2 and page == 1 and per_page == 20
        assert {item.id for item in items} == {first.id, second.id}

        pending, pending_total, _, _ = appointment_service.list_customer_appointments(
            CUSTOMER_ID, status=AppointmentStatus.PENDING
        )
        assert pending_total == 1 and pending[0].id == first.id

        upcoming = appointment_service.list_upcoming_appointments(CUSTOMER_ID)
        assert [item.id for item in upcoming] == [first.id]

    def test_page_size_is_clamped(self, appointment_service):
        _, total, page, per_page = appointment_service.list_customer_appointments(
            CUSTOMER_ID, page=0, per_page=1000
        )
        assert (total, page, per_page) == (0, 1, 100)

    def test_salon_listing_requires_authority(
        self, appointment_service, book, seeded, owner, customer, slot_start
    ):
        book()
        book(OTHER_CUSTOMER_ID, barber_id=OTHER_BARBER_ID)

        items, total, _, _ = appointment_service.list_salon_appointments(seeded.salon.id, owner)
        assert total == 2

        mine, mine_total, _, _ = appointment_service.list_salon_appointments(
            seeded.salon.id, owner, barber_id=OTHER_BARBER_ID
        )
        assert mine_total == 1 and mine[0].barber_id == OTHER_BARBER_ID

        window, window_total, _, _ = appointment_service.list_salon_appointments(
            seeded.salon.id,
            owner,
            date_from=slot_start + timedelta(hours=1),
        )
        assert window_total == 0

        with raises_domain(ErrorKind.FORBIDDEN):
            appointment_service.list_salon_appointments(seeded.salon.id, customer)

    def test_salon_statistics(self, appointment_service, db, book, pay, seeded, owner, slot_start):
        pay(book())
        book(OTHER_CUSTOMER_ID, barber_id=OTHER_BARBER_ID)
        insert_appointment(
            db, seeded.salon.id, slot_start + timedelta(hours=3), 30, status="cancelled"
        )

        stats = appointment_service.get_salon_statistics(seeded.salon.id, owner)

        assert stats["salon_id"] == seeded.salon.id
        assert stats["total"] == 3
        assert stats["upcoming"] == 2
        assert stats["by_status"]["confirmed"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["cancelled"] == 1
        assert stats["by_status"]["completed"] == 0
