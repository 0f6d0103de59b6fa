from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.academics.models import SchoolClass, Section
from apps.core.exceptions import (
    ApplicationFeeUnpaid,
    ConcessionLocked,
    InvalidConcession,
    InvalidTransition,
    LedgerValidationError,
    ReservationNotFound,
)
from apps.core.fees.models import FeeBalance, IncomeRecord
from apps.core.fees.services import create_fee_balances, persistence_guard, post_payment, set_concession
from apps.core.students.services import create_enrollment, register_student
from apps.core.utils.money import MAX_AMOUNT, ZERO, quantize

from .models import Reservation, ReservationStatusHistory

logger = logging.getLogger(__name__)

STUDENT_FIELDS = ('gender', 'date_of_birth', 'guardian_name', 'phone')


def _reservation_number(reservation: Reservation) -> str:
    return f"RES-{reservation.school_id}-{reservation.id:06d}"


def _money(value, field, identifier=None):
    try:
        amount = quantize(value)
    except ValueError:
        raise LedgerValidationError(f"{field} must be a number.", identifier=identifier) from None
    if amount < 0:
        raise LedgerValidationError(f"{field} cannot be negative.", identifier=identifier)
    if amount > MAX_AMOUNT:
        raise LedgerValidationError(f"{field} cannot exceed {MAX_AMOUNT}.", identifier=identifier)
    return amount


def _get_reservation(*, school, reservation_id, for_update=False) -> Reservation:
    queryset = Reservation.objects.for_school(school).select_related('school_class', 'session')
    if for_update:
        queryset = queryset.select_for_update(of=('self',))
    reservation = queryset.filter(pk=reservation_id).first()
    if reservation is None:
        raise ReservationNotFound(f"Reservation '{reservation_id}' does not exist.", identifier=reservation_id)
    return reservation


def get_reservation(*, school, reservation_id) -> Reservation:
    return _get_reservation(school=school, reservation_id=reservation_id)


def _record_transition(reservation: Reservation, new_status, remarks='', **changes):
    old_status = reservation.status
    reservation.status = new_status
    for field, value in changes.items():
        setattr(reservation, field, value)
    update_fields = ['status', 'updated_at', *changes]
    if remarks:
        reservation.remarks = remarks[:255]
        update_fields.append('remarks')
    reservation.save(update_fields=update_fields)

    ReservationStatusHistory.objects.create(
        reservation=reservation,
        old_status=old_status,
        new_status=new_status,
        remarks=(remarks or '')[:255],
    )
    logger.info('Reservation %s moved %s -> %s', reservation.reservation_no, old_status, new_status)


def _admission_result(reservation: Reservation):
    enrollment = None
    if reservation.is_enrolled:
        enrollment = reservation.enrollments.order_by('id').first()
    return {
        'reservation': reservation,
        'enrollment': enrollment,
        'admission_income': reservation.admission_income,
    }


@transaction.atomic
def create_reservation(
    *,
    school,
    student_name,
    school_class: SchoolClass | None = None,
    session=None,
    application_fee=ZERO,
    tuition_fee=None,
    book_fee=None,
    transport_fee=ZERO,
    tuition_concession=ZERO,
    transport_concession=ZERO,
    remarks='',
    guardian_name='',
    phone='',
) -> Reservation:
    """Open a PENDING reservation, snapshotting class fees unless explicit fees are given."""
    student_name = (student_name or '').strip()
    if not student_name:
        raise LedgerValidationError('Student name is required.')
    if school_class is not None and school_class.school_id != school.id:
        raise LedgerValidationError('Class must belong to selected school.', identifier=school_class.id)

    if tuition_fee is None:
        tuition_fee = school_class.tuition_fee if school_class else ZERO
    if book_fee is None:
        book_fee = school_class.book_fee if school_class else ZERO
    if session is None:
        session = school_class.session if school_class else school.current_session

    fees = {
        'application_fee': _money(application_fee, 'Application fee'),
        'tuition_fee': _money(tuition_fee, 'Tuition fee'),
        'transport_fee': _money(transport_fee, 'Transport fee'),
        'book_fee': _money(book_fee, 'Book fee'),
    }
    tuition_concession = _money(tuition_concession, 'Tuition concession')
    transport_concession = _money(transport_concession, 'Transport concession')
    if tuition_concession > fees['tuition_fee']:
        raise InvalidConcession('Tuition concession cannot exceed tuition fee.')
    if transport_concession > fees['transport_fee']:
        raise InvalidConcession('Transport concession cannot exceed transport fee.')

    reservation = Reservation.objects.create(
        school=school,
        session=session,
        student_name=student_name[:200],
        guardian_name=(guardian_name or '').strip()[:120],
        phone=(phone or '').strip()[:20],
        school_class=school_class,
        tuition_concession=tuition_concession,
        transport_concession=transport_concession,
        remarks=(remarks or '').strip()[:255],
        **fees,
    )
    reservation.reservation_no = _reservation_number(reservation)
    reservation.save(update_fields=['reservation_no'])
    logger.info('Created reservation %s for %s', reservation.reservation_no, reservation.student_name)
    return reservation


def _grant_on_reservation(reservation: Reservation, tuition_amount, transport_amount, remarks):
    if reservation.concession_lock:
        raise ConcessionLocked(
            f"Concession for reservation {reservation.reservation_no} is locked.",
            identifier=reservation.id,
        )
    if reservation.status == Reservation.STATUS_CANCELLED:
        raise InvalidTransition(
            f"Reservation {reservation.reservation_no} is cancelled.",
            identifier=reservation.id,
        )

    update_fields = ['updated_at']
    for field, amount, fee in (
        ('tuition_concession', tuition_amount, reservation.tuition_fee),
        ('transport_concession', transport_amount, reservation.transport_fee),
    ):
        if amount is None:
            continue
        try:
            amount = quantize(amount)
        except ValueError:
            raise InvalidConcession(identifier=reservation.id, details={'field': field}) from None
        if amount < 0 or amount > fee:
            raise InvalidConcession(
                f"{field.replace('_', ' ').capitalize()} must be between 0 and {fee}.",
                identifier=reservation.id,
                details={'field': field, 'amount': str(amount)},
            )
        setattr(reservation, field, amount)
        update_fields.append(field)

    if remarks:
        reservation.remarks = remarks[:255]
        update_fields.append('remarks')
    reservation.save(update_fields=update_fields)


def grant_concession(
    *,
    school,
    reservation_id=None,
    enrollment_id=None,
    tuition_amount=None,
    transport_amount=None,
    remarks='',
):
    """
    Adjust concessions on a reservation, or on the balances of an enrollment.

    Never touches ``concession_lock``; a locked reservation raises
    ``ConcessionLocked`` and nothing is written. Returns ``None``: re-read the
    reservation or balances for current state.
    """
    if (reservation_id is None) == (enrollment_id is None):
        raise LedgerValidationError('Concession must target exactly one reservation or enrollment.')
    if tuition_amount is None and transport_amount is None:
        raise InvalidConcession('Provide a tuition or transport concession amount.')

    identifier = reservation_id if reservation_id is not None else enrollment_id
    with persistence_guard(identifier), transaction.atomic():
        if reservation_id is not None:
            reservation = _get_reservation(school=school, reservation_id=reservation_id, for_update=True)
            _grant_on_reservation(reservation, tuition_amount, transport_amount, (remarks or '').strip())
        else:
            if tuition_amount is not None:
                set_concession(
                    school=school,
                    enrollment_id=enrollment_id,
                    kind=FeeBalance.KIND_TUITION,
                    amount=tuition_amount,
                )
            if transport_amount is not None:
                set_concession(
                    school=school,
                    enrollment_id=enrollment_id,
                    kind=FeeBalance.KIND_TRANSPORT,
                    amount=transport_amount,
                )

    logger.info(
        'Concession granted on %s %s (tuition=%s, transport=%s)',
        'reservation' if reservation_id is not None else 'enrollment',
        identifier,
        tuition_amount,
        transport_amount,
    )


def _enroll(reservation: Reservation, admission: dict):
    """Turn a confirmed reservation into a student, an enrollment and opening balances."""
    school = reservation.school
    school_class = reservation.school_class
    class_id = admission.get('class_id')
    if class_id:
        school_class = SchoolClass.objects.for_school(school).filter(pk=class_id, is_active=True).first()
    if school_class is None:
        raise LedgerValidationError(
            'A class is required to enroll the reservation.',
            identifier=reservation.id,
        )
    session = reservation.session or school_class.session

    section = None
    section_id = admission.get('section_id')
    if section_id:
        section = Section.objects.filter(pk=section_id, school_class=school_class, is_active=True).first()
        if section is None:
            raise LedgerValidationError(
                f"Section '{section_id}' does not belong to {school_class.name}.",
                identifier=reservation.id,
            )

    first_name = (admission.get('first_name') or '').strip()
    last_name = (admission.get('last_name') or '').strip()
    if not first_name:
        first_name, _, last_name = reservation.student_name.partition(' ')
    extra = {field: admission[field] for field in STUDENT_FIELDS if admission.get(field)}
    extra.setdefault('guardian_name', reservation.guardian_name)
    extra.setdefault('phone', reservation.phone)

    student = register_student(school=school, first_name=first_name, last_name=last_name, **extra)
    enrollment = create_enrollment(
        school=school,
        student=student,
        session=session,
        school_class=school_class,
        section=section,
        roll_number=admission.get('roll_number') or None,
        reservation=reservation,
    )
    create_fee_balances(
        enrollment=enrollment,
        tuition_fee=reservation.tuition_fee,
        tuition_concession=reservation.tuition_concession,
        book_fee=reservation.book_fee,
        transport_fee=reservation.transport_fee,
        transport_concession=reservation.transport_concession,
    )

    admission_fee = admission.get('admission_fee')
    if admission_fee in (None, ''):
        admission_fee = settings.ADMISSIONS_DEFAULT_ADMISSION_FEE
    admission_fee = _money(admission_fee, 'Admission fee', identifier=reservation.id)

    update_fields = ['is_enrolled', 'updated_at']
    if admission_fee > 0:
        records = post_payment(
            school=school,
            enrollment_id=enrollment.id,
            details=[{
                'purpose': IncomeRecord.PURPOSE_ADMISSION_FEE,
                'amount': admission_fee,
                'payment_method': admission.get('payment_method') or IncomeRecord.METHOD_CASH,
            }],
            remarks=f"Admission for {reservation.reservation_no}",
            collected_by=admission.get('collected_by', ''),
        )
        reservation.admission_income = records[0]
        update_fields.append('admission_income')

    reservation.is_enrolled = True
    reservation.save(update_fields=update_fields)
    logger.info(
        'Reservation %s enrolled as %s in %s',
        reservation.reservation_no,
        student.admission_number,
        school_class.name,
    )
    return {
        'reservation': reservation,
        'enrollment': enrollment,
        'admission_income': reservation.admission_income,
    }


def confirm_reservation(*, school, reservation_id, remarks='', admission=None):
    """
    Confirm a PENDING reservation and lock its concessions.

    With ``admission`` details the student is enrolled in the same transaction.
    Safe to retry: an already enrolled reservation returns its existing
    enrollment and admission income untouched, and a confirmed but not yet
    enrolled one completes the enrollment.
    """
    with persistence_guard(reservation_id), transaction.atomic():
        reservation = _get_reservation(school=school, reservation_id=reservation_id, for_update=True)

        if reservation.is_enrolled:
            return _admission_result(reservation)

        if reservation.status == Reservation.STATUS_CONFIRMED:
            if admission is None:
                return _admission_result(reservation)
            return _enroll(reservation, admission)

        if reservation.status != Reservation.STATUS_PENDING:
            raise InvalidTransition(
                f"Reservation {reservation.reservation_no} is {reservation.status.lower()} and cannot be confirmed.",
                identifier=reservation.id,
                details={'status': reservation.status},
            )

        if (
            settings.ADMISSIONS_REQUIRE_APPLICATION_FEE
            and reservation.application_fee_paid < reservation.application_fee
        ):
            raise ApplicationFeeUnpaid(
                f"Application fee for reservation {reservation.reservation_no} is unpaid.",
                identifier=reservation.id,
                details={
                    'application_fee': str(reservation.application_fee),
                    'application_fee_paid': str(reservation.application_fee_paid),
                },
            )

        _record_transition(
            reservation,
            Reservation.STATUS_CONFIRMED,
            remarks=(remarks or '').strip(),
            concession_lock=True,
            confirmed_at=timezone.now(),
        )

        if admission is not None:
            return _enroll(reservation, admission)
        return _admission_result(reservation)


def cancel_reservation(*, school, reservation_id, remarks='') -> Reservation:
    with persistence_guard(reservation_id), transaction.atomic():
        reservation = _get_reservation(school=school, reservation_id=reservation_id, for_update=True)
        if reservation.status != Reservation.STATUS_PENDING:
            raise InvalidTransition(
                f"Reservation {reservation.reservation_no} is {reservation.status.lower()} and cannot be cancelled.",
                identifier=reservation.id,
                details={'status': reservation.status},
            )
        _record_transition(
            reservation,
            Reservation.STATUS_CANCELLED,
            remarks=(remarks or '').strip(),
            cancelled_at=timezone.now(),
        )
    return reservation


def pay_application_fee(
    *,
    school,
    reservation_id,
    amount,
    payment_method=IncomeRecord.METHOD_CASH,
    remarks='',
    collected_by='',
) -> IncomeRecord:
    """Collect the application fee; the reservation status is left as it is."""
    records = post_payment(
        school=school,
        reservation_id=reservation_id,
        details=[{
            'purpose': IncomeRecord.PURPOSE_APPLICATION_FEE,
            'amount': amount,
            'payment_method': payment_method,
        }],
        remarks=remarks,
        collected_by=collected_by,
    )
    return records[0]


def enroll_reservation(*, school, reservation_id, admission=None):
    with persistence_guard(reservation_id), transaction.atomic():
        reservation = _get_reservation(school=school, reservation_id=reservation_id, for_update=True)
        if reservation.is_enrolled:
            return _admission_result(reservation)
        if reservation.status != Reservation.STATUS_CONFIRMED:
            raise InvalidTransition(
                f"Reservation {reservation.reservation_no} must be confirmed before enrollment.",
                identifier=reservation.id,
                details={'status': reservation.status},
            )
        return _enroll(reservation, admission or {})