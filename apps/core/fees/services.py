from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ObjectDoesNotExist
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.core.admissions.models import Reservation
from apps.core.exceptions import (
    BalanceNotFound,
    ConcessionLocked,
    ConcurrentUpdateConflict,
    InvalidConcession,
    InvalidPaymentMethod,
    InvalidPurpose,
    InvalidTermNumber,
    InvalidTransition,
    LedgerValidationError,
    MissingTermNumber,
    NonPositiveAmount,
    OverpaymentRejected,
    PaymentRuleViolation,
    PersistenceFailure,
    ReservationNotFound,
)
from apps.core.students.models import Enrollment
from apps.core.students.services import get_enrollment
from apps.core.utils.money import (
    MAX_AMOUNT,
    ZERO,
    has_at_most_two_decimals,
    quantize,
    split_by_weights,
    to_decimal,
)

from .models import FeeBalance, IncomeRecord, TransportFeeBalance, TuitionFeeBalance
from .signals import dispatch_payment_posted

logger = logging.getLogger(__name__)

BOOK_SLOT = 'BOOK'

PURPOSES = {choice[0] for choice in IncomeRecord.PURPOSE_CHOICES}
PAYMENT_METHODS = {choice[0] for choice in IncomeRecord.PAYMENT_METHOD_CHOICES}
ENROLLMENT_PURPOSES = {
    IncomeRecord.PURPOSE_ADMISSION_FEE,
    IncomeRecord.PURPOSE_TUITION_FEE,
    IncomeRecord.PURPOSE_TRANSPORT_FEE,
    IncomeRecord.PURPOSE_BOOK_FEE,
    IncomeRecord.PURPOSE_OTHER,
}
RESERVATION_PURPOSES = {
    IncomeRecord.PURPOSE_APPLICATION_FEE,
    IncomeRecord.PURPOSE_OTHER,
}
TERM_PURPOSES = {
    IncomeRecord.PURPOSE_TUITION_FEE: TuitionFeeBalance,
    IncomeRecord.PURPOSE_TRANSPORT_FEE: TransportFeeBalance,
}

BALANCE_MODELS = {
    FeeBalance.KIND_TUITION: TuitionFeeBalance,
    FeeBalance.KIND_TRANSPORT: TransportFeeBalance,
}


@contextmanager
def persistence_guard(identifier=None):
    """Surface storage faults as a retryable ``PersistenceFailure``."""
    try:
        yield
    except DatabaseError as error:
        logger.exception('Storage failure while writing ledger data for %s', identifier)
        raise PersistenceFailure(identifier=identifier, details={'reason': str(error)}) from error


def _balance_model(kind):
    model = BALANCE_MODELS.get(kind)
    if model is None:
        raise LedgerValidationError(f"Unknown balance kind '{kind}'.", identifier=kind)
    return model


def _term_weights(model):
    if model is TuitionFeeBalance:
        return settings.FEE_TUITION_TERM_WEIGHTS
    return settings.FEE_TRANSPORT_TERM_WEIGHTS


def outstanding_cache_key(school_id, enrollment_id) -> str:
    return f"fees:outstanding:{school_id}:{enrollment_id}"


def _invalidate_outstanding(school_id, enrollment_id):
    transaction.on_commit(lambda: cache.delete(outstanding_cache_key(school_id, enrollment_id)))


def _load_balance(model, *, school, enrollment_id):
    balance = model.objects.for_school(school).filter(enrollment_id=enrollment_id).first()
    if balance is None:
        raise BalanceNotFound(
            f"{model.KIND.title()} balance for enrollment '{enrollment_id}' does not exist.",
            identifier=enrollment_id,
            details={'kind': model.KIND},
        )
    return balance


def _versioned_update(balance: FeeBalance, **changes):
    """Write ``changes`` only if nobody else has touched the row since it was read."""
    model = type(balance)
    updated = model.objects.filter(pk=balance.pk, version=balance.version).update(
        version=F('version') + 1,
        updated_at=timezone.now(),
        **changes,
    )
    if updated != 1:
        raise ConcurrentUpdateConflict(
            f"{balance.KIND.title()} balance for enrollment '{balance.enrollment_id}' changed concurrently.",
            identifier=balance.enrollment_id,
            details={'kind': balance.KIND, 'version': balance.version},
        )
    for field, value in changes.items():
        setattr(balance, field, value)
    balance.version += 1
    return balance


def _slot_fields(balance: FeeBalance, slot):
    if slot == BOOK_SLOT:
        if not isinstance(balance, TuitionFeeBalance):
            raise InvalidTermNumber(
                'Book fee is tracked on the tuition balance.',
                identifier=balance.enrollment_id,
            )
        return 'book_fee', 'book_paid'

    try:
        term_number = int(slot)
    except (TypeError, ValueError):
        term_number = None
    if term_number is None or not balance.has_term(term_number):
        raise InvalidTermNumber(
            f"Term {slot} does not exist for {balance.KIND.lower()} fees.",
            identifier=balance.enrollment_id,
            details={'kind': balance.KIND, 'term_number': slot},
        )
    return f'term{term_number}_amount', f'term{term_number}_paid'


def _apply_to_balance(balance: FeeBalance, slot, amount):
    try:
        amount = quantize(amount)
    except ValueError:
        raise NonPositiveAmount(identifier=balance.enrollment_id, details={'amount': str(amount)}) from None
    if amount <= 0:
        raise NonPositiveAmount(identifier=balance.enrollment_id, details={'amount': str(amount)})

    amount_field, paid_field = _slot_fields(balance, slot)
    slot_amount = to_decimal(getattr(balance, amount_field))
    slot_paid = to_decimal(getattr(balance, paid_field))
    outstanding = slot_amount - slot_paid
    if outstanding < 0:
        outstanding = ZERO

    if amount > outstanding:
        raise OverpaymentRejected(
            f"Payment of {amount} exceeds outstanding {outstanding} for {balance.KIND.lower()} {slot}.",
            identifier=balance.enrollment_id,
            details={'kind': balance.KIND, 'slot': slot, 'outstanding': str(quantize(outstanding))},
        )

    return _versioned_update(balance, **{paid_field: quantize(slot_paid + amount)})


def get_balance(*, school, enrollment_id, kind):
    get_enrollment(school=school, enrollment_id=enrollment_id)
    return _load_balance(_balance_model(kind), school=school, enrollment_id=enrollment_id)


def apply_payment(*, school, enrollment_id, kind, slot, amount):
    """Add ``amount`` to one term (or the book fee) without recording income."""
    model = _balance_model(kind)
    with persistence_guard(enrollment_id), transaction.atomic():
        get_enrollment(school=school, enrollment_id=enrollment_id, for_update=True)
        balance = _load_balance(model, school=school, enrollment_id=enrollment_id)
        _apply_to_balance(balance, slot, amount)
        _invalidate_outstanding(school.id, enrollment_id)
    return balance


def _lock_reservation_for(enrollment: Enrollment):
    if not enrollment.reservation_id:
        return None
    return Reservation.objects.select_for_update().get(pk=enrollment.reservation_id)


def _rederive_term_amounts(net_fee, weights, paid):
    """
    Split ``net_fee`` by ``weights`` without dropping any term below what is
    already paid on it. Whatever a paid term keeps above its share comes out
    of the unpaid terms, last term first, so the terms still owe
    ``max(0, net_fee - sum(paid))``.
    """
    amounts = [max(share, slot_paid) for share, slot_paid in zip(split_by_weights(net_fee, weights), paid)]
    excess = sum(amounts, ZERO) - max(net_fee, sum(paid, ZERO))
    for index in reversed(range(len(amounts))):
        if excess <= 0:
            break
        cut = min(amounts[index] - paid[index], excess)
        amounts[index] -= cut
        excess -= cut
    return [quantize(term_amount) for term_amount in amounts]


def set_concession(*, school, enrollment_id, kind, amount):
    """
    Overwrite the concession on one balance and re-derive the term amounts from
    the new net fee. Paid amounts are left where they are.
    """
    model = _balance_model(kind)
    try:
        amount = quantize(amount)
    except ValueError:
        raise InvalidConcession(identifier=enrollment_id, details={'amount': str(amount)}) from None

    with persistence_guard(enrollment_id), transaction.atomic():
        enrollment = get_enrollment(school=school, enrollment_id=enrollment_id, for_update=True)
        reservation = _lock_reservation_for(enrollment)
        if reservation is not None and reservation.concession_lock:
            raise ConcessionLocked(
                f"Concession for enrollment '{enrollment_id}' is locked by reservation {reservation.reservation_no}.",
                identifier=enrollment_id,
                details={'reservation_id': reservation.id},
            )

        balance = _load_balance(model, school=school, enrollment_id=enrollment_id)
        if amount < 0 or amount > to_decimal(balance.actual_fee):
            raise InvalidConcession(
                f"Concession must be between 0 and {balance.actual_fee}.",
                identifier=enrollment_id,
                details={'kind': kind, 'amount': str(amount)},
            )

        net_fee = quantize(to_decimal(balance.actual_fee) - amount)
        term_amounts = _rederive_term_amounts(
            net_fee,
            _term_weights(model),
            [to_decimal(getattr(balance, f'term{term_number}_paid')) for term_number in model.term_numbers()],
        )
        changes = {'concession_amount': amount}
        for term_number, term_amount in zip(model.term_numbers(), term_amounts):
            changes[f'term{term_number}_amount'] = term_amount
        _versioned_update(balance, **changes)
        _invalidate_outstanding(school.id, enrollment_id)

    logger.info('Concession on %s balance of enrollment %s set to %s', kind, enrollment_id, amount)
    return balance


@transaction.atomic
def create_fee_balances(
    *,
    enrollment: Enrollment,
    tuition_fee,
    tuition_concession=ZERO,
    book_fee=ZERO,
    transport_fee=ZERO,
    transport_concession=ZERO,
):
    """Snapshot fee figures into fresh balance rows for a new enrollment."""
    tuition_fee = quantize(tuition_fee)
    tuition_concession = quantize(tuition_concession)
    if tuition_concession < 0 or tuition_concession > tuition_fee:
        raise InvalidConcession('Tuition concession cannot exceed tuition fee.', identifier=enrollment.id)

    tuition_terms = split_by_weights(tuition_fee - tuition_concession, settings.FEE_TUITION_TERM_WEIGHTS)
    tuition = TuitionFeeBalance.objects.create(
        school=enrollment.school,
        session=enrollment.session,
        enrollment=enrollment,
        actual_fee=tuition_fee,
        concession_amount=tuition_concession,
        book_fee=quantize(book_fee),
        **{
            f'term{term_number}_amount': term_amount
            for term_number, term_amount in zip(TuitionFeeBalance.term_numbers(), tuition_terms)
        },
    )

    transport = None
    transport_fee = quantize(transport_fee)
    if transport_fee > 0:
        transport_concession = quantize(transport_concession)
        if transport_concession < 0 or transport_concession > transport_fee:
            raise InvalidConcession('Transport concession cannot exceed transport fee.', identifier=enrollment.id)
        transport_terms = split_by_weights(
            transport_fee - transport_concession,
            settings.FEE_TRANSPORT_TERM_WEIGHTS,
        )
        transport = TransportFeeBalance.objects.create(
            school=enrollment.school,
            session=enrollment.session,
            enrollment=enrollment,
            actual_fee=transport_fee,
            concession_amount=transport_concession,
            **{
                f'term{term_number}_amount': term_amount
                for term_number, term_amount in zip(TransportFeeBalance.term_numbers(), transport_terms)
            },
        )

    return {
        'tuition': tuition,
        'transport': transport,
    }


def outstanding_amount(tuition=None, transport=None):
    """Tuition term balances + book balance + transport term balances."""
    total = ZERO
    if tuition is not None:
        total += tuition.terms_balance + tuition.book_balance
    if transport is not None:
        total += transport.terms_balance
    return quantize(total)


def total_outstanding(*, school, enrollment_id):
    get_enrollment(school=school, enrollment_id=enrollment_id)
    tuition = TuitionFeeBalance.objects.for_school(school).filter(enrollment_id=enrollment_id).first()
    transport = TransportFeeBalance.objects.for_school(school).filter(enrollment_id=enrollment_id).first()
    return outstanding_amount(tuition, transport)


def cached_total_outstanding(*, school, enrollment_id):
    key = outstanding_cache_key(school.id, enrollment_id)
    value = cache.get(key)
    if value is None:
        value = total_outstanding(school=school, enrollment_id=enrollment_id)
        cache.set(key, value, settings.FEE_OUTSTANDING_CACHE_TIMEOUT)
    return value


def _related_balance(enrollment: Enrollment, name):
    try:
        return getattr(enrollment, name)
    except ObjectDoesNotExist:
        return None


def enrollment_outstanding(enrollment: Enrollment):
    """Outstanding for an enrollment whose balances came in through ``select_related``."""
    return outstanding_amount(
        _related_balance(enrollment, 'tuition_balance'),
        _related_balance(enrollment, 'transport_balance'),
    )


def cached_outstanding_by_enrollment(*, school, enrollment_ids):
    """
    Outstanding amount per enrollment id. Cache misses are computed from one
    query over the balances and written back to the cache together.
    """
    keys = {outstanding_cache_key(school.id, enrollment_id): enrollment_id for enrollment_id in enrollment_ids}
    amounts = {keys[key]: value for key, value in cache.get_many(list(keys)).items()}

    missing = [enrollment_id for enrollment_id in keys.values() if enrollment_id not in amounts]
    if missing:
        fresh = {
            enrollment.id: enrollment_outstanding(enrollment)
            for enrollment in Enrollment.objects.for_school(school)
            .filter(pk__in=missing)
            .select_related('tuition_balance', 'transport_balance')
        }
        cache.set_many(
            {outstanding_cache_key(school.id, enrollment_id): value for enrollment_id, value in fresh.items()},
            settings.FEE_OUTSTANDING_CACHE_TIMEOUT,
        )
        amounts.update(fresh)
    return amounts


def _normalize_detail(raw, index, identifier):
    purpose = str(raw.get('purpose') or '').strip().upper()
    if purpose not in PURPOSES:
        raise InvalidPurpose(
            f"Payment {index}: unknown purpose '{raw.get('purpose')}'.",
            identifier=identifier,
            details={'index': index},
        )

    raw_amount = raw.get('amount', raw.get('paid_amount'))
    try:
        amount = to_decimal(raw_amount)
    except ValueError:
        raise NonPositiveAmount(
            f"Payment {index}: amount '{raw_amount}' is not a number.",
            identifier=identifier,
            details={'index': index},
        ) from None
    if amount <= 0:
        raise NonPositiveAmount(
            f"Payment {index}: amount must be greater than zero.",
            identifier=identifier,
            details={'index': index},
        )
    if amount > MAX_AMOUNT:
        raise LedgerValidationError(
            f"Payment {index}: amount cannot exceed {MAX_AMOUNT}.",
            identifier=identifier,
            details={'index': index, 'max_amount': str(MAX_AMOUNT)},
        )
    if not has_at_most_two_decimals(amount):
        raise LedgerValidationError(
            f"Payment {index}: amount can have maximum 2 decimal places.",
            identifier=identifier,
            details={'index': index},
        )

    method = str(raw.get('payment_method') or raw.get('method') or IncomeRecord.METHOD_CASH).strip().upper()
    if method not in PAYMENT_METHODS:
        raise InvalidPaymentMethod(
            f"Payment {index}: unknown payment method '{method}'.",
            identifier=identifier,
            details={'index': index},
        )

    term_number = raw.get('term_number')
    if term_number in ('', None):
        term_number = None
    if purpose in TERM_PURPOSES:
        if term_number is None:
            raise MissingTermNumber(
                f"Payment {index}: term number is required for {purpose}.",
                identifier=identifier,
                details={'index': index},
            )
        try:
            term_number = int(term_number)
        except (TypeError, ValueError):
            term_number = None
        if term_number is None or not TERM_PURPOSES[purpose].has_term(term_number):
            raise InvalidTermNumber(
                f"Payment {index}: term number must be between 1 and {TERM_PURPOSES[purpose].TERM_COUNT}.",
                identifier=identifier,
                details={'index': index, 'term_number': raw.get('term_number')},
            )
    elif term_number is not None:
        raise InvalidTermNumber(
            f"Payment {index}: term number must be omitted for {purpose}.",
            identifier=identifier,
            details={'index': index},
        )

    custom_purpose_name = str(raw.get('custom_purpose_name') or '').strip()
    if purpose == IncomeRecord.PURPOSE_OTHER:
        if len(custom_purpose_name) < 3 or len(custom_purpose_name) > 100:
            raise PaymentRuleViolation(
                f"Payment {index}: custom purpose name must be 3 to 100 characters.",
                identifier=identifier,
                details={'index': index},
            )
    else:
        custom_purpose_name = ''

    return {
        'purpose': purpose,
        'amount': quantize(amount),
        'payment_method': method,
        'term_number': term_number,
        'custom_purpose_name': custom_purpose_name,
    }


def _check_collection_rules(details, identifier):
    if sum(1 for detail in details if detail['purpose'] == IncomeRecord.PURPOSE_BOOK_FEE) > 1:
        raise PaymentRuleViolation('Book fee can only be paid once per transaction.', identifier=identifier)

    custom_names = [
        detail['custom_purpose_name'].lower()
        for detail in details
        if detail['purpose'] == IncomeRecord.PURPOSE_OTHER
    ]
    if len(custom_names) != len(set(custom_names)):
        raise PaymentRuleViolation('Duplicate custom purpose payments are not allowed.', identifier=identifier)

    for purpose in TERM_PURPOSES:
        terms = [detail['term_number'] for detail in details if detail['purpose'] == purpose]
        if len(terms) != len(set(terms)):
            raise PaymentRuleViolation(
                f"{purpose} term can only be paid once per transaction.",
                identifier=identifier,
            )
        if settings.FEE_PAYMENT_REQUIRE_SEQUENTIAL_TERMS:
            ordered = sorted(terms)
            if any(later - earlier != 1 for earlier, later in zip(ordered, ordered[1:])):
                raise PaymentRuleViolation(
                    f"{purpose} terms must be paid sequentially.",
                    identifier=identifier,
                )


def _check_book_fee_first(details, tuition, identifier):
    if not settings.FEE_PAYMENT_REQUIRE_BOOK_FEE_FIRST or tuition is None:
        return
    if tuition.book_balance <= 0:
        return
    purposes = {detail['purpose'] for detail in details}
    if purposes & set(TERM_PURPOSES) and IncomeRecord.PURPOSE_BOOK_FEE not in purposes:
        raise PaymentRuleViolation(
            'Book fee must be paid before any term fee.',
            identifier=identifier,
        )


def _check_application_fee(reservation: Reservation, details):
    """Return the application fee total of ``details`` after checking it fits the reservation."""
    total = sum(
        (detail['amount'] for detail in details if detail['purpose'] == IncomeRecord.PURPOSE_APPLICATION_FEE),
        ZERO,
    )
    if total <= 0:
        return ZERO
    if reservation.status == Reservation.STATUS_CANCELLED:
        raise InvalidTransition(
            f"Reservation {reservation.reservation_no} is cancelled.",
            identifier=reservation.id,
        )

    outstanding = to_decimal(reservation.application_fee) - to_decimal(reservation.application_fee_paid)
    outstanding = quantize(max(outstanding, ZERO))
    if total > outstanding:
        raise OverpaymentRejected(
            f"Payment of {total} exceeds outstanding application fee {outstanding}.",
            identifier=reservation.id,
            details={'outstanding': str(outstanding)},
        )
    return total


def _stamp_application_fee(reservation: Reservation, records, total):
    reservation.application_fee_paid = quantize(to_decimal(reservation.application_fee_paid) + total)
    update_fields = ['application_fee_paid', 'updated_at']
    if reservation.application_income_id is None:
        reservation.application_income = next(
            record for record in records if record.purpose == IncomeRecord.PURPOSE_APPLICATION_FEE
        )
        update_fields.append('application_income')
    reservation.save(update_fields=update_fields)


def _receipt_number(record: IncomeRecord) -> str:
    date_part = timezone.localtime(record.created_at).strftime('%Y%m%d')
    return f"RCP-{record.school_id}-{date_part}-{record.id:06d}"


def _resolve_target(*, school, enrollment_id, admission_no, reservation_id):
    targets = [value for value in (enrollment_id, admission_no, reservation_id) if value not in (None, '')]
    if len(targets) != 1:
        raise LedgerValidationError('Payment must target exactly one enrollment or reservation.')

    if reservation_id not in (None, ''):
        reservation = (
            Reservation.objects.for_school(school)
            .select_for_update()
            .filter(pk=reservation_id)
            .first()
        )
        if reservation is None:
            raise ReservationNotFound(
                f"Reservation '{reservation_id}' does not exist.",
                identifier=reservation_id,
            )
        return None, reservation

    enrollment = get_enrollment(
        school=school,
        enrollment_id=enrollment_id,
        admission_no=admission_no,
        for_update=True,
    )
    return enrollment, None


def post_payment(
    *,
    school,
    details,
    enrollment_id=None,
    admission_no=None,
    reservation_id=None,
    remarks='',
    collected_by='',
):
    """
    Apply a multi-line payment to one enrollment (or reservation) atomically.

    Every detail is validated before anything is written. Balance updates and
    income records share one transaction: a failure on any line rolls back all
    lines. Receipt rendering is left to ``payment_posted`` receivers, which run
    only after the transaction commits.
    """
    identifier = enrollment_id or admission_no or reservation_id
    if not details:
        raise LedgerValidationError('At least one payment detail is required.', identifier=identifier)

    normalized = [_normalize_detail(raw, index, identifier) for index, raw in enumerate(details, start=1)]
    allowed = RESERVATION_PURPOSES if reservation_id not in (None, '') else ENROLLMENT_PURPOSES
    for index, detail in enumerate(normalized, start=1):
        if detail['purpose'] not in allowed:
            raise InvalidPurpose(
                f"Payment {index}: {detail['purpose']} cannot be collected against this target.",
                identifier=identifier,
                details={'index': index},
            )
    _check_collection_rules(normalized, identifier)

    batch_id = uuid.uuid4()
    remarks = (remarks or '').strip()[:255]
    collected_by = (collected_by or '')[:150]

    with persistence_guard(identifier), transaction.atomic():
        enrollment, reservation = _resolve_target(
            school=school,
            enrollment_id=enrollment_id,
            admission_no=admission_no,
            reservation_id=reservation_id,
        )

        balances = {}
        if enrollment is not None:
            identifier = enrollment.id
            needs_tuition = any(
                detail['purpose'] in (IncomeRecord.PURPOSE_TUITION_FEE, IncomeRecord.PURPOSE_BOOK_FEE)
                for detail in normalized
            )
            needs_transport = any(
                detail['purpose'] == IncomeRecord.PURPOSE_TRANSPORT_FEE for detail in normalized
            )
            if needs_tuition:
                balances[FeeBalance.KIND_TUITION] = _load_balance(
                    TuitionFeeBalance, school=school, enrollment_id=enrollment.id
                )
            if needs_transport:
                balances[FeeBalance.KIND_TRANSPORT] = _load_balance(
                    TransportFeeBalance, school=school, enrollment_id=enrollment.id
                )
            tuition = balances.get(FeeBalance.KIND_TUITION)
            if tuition is None and settings.FEE_PAYMENT_REQUIRE_BOOK_FEE_FIRST:
                tuition = TuitionFeeBalance.objects.for_school(school).filter(enrollment=enrollment).first()
            _check_book_fee_first(normalized, tuition, identifier)

        application_total = ZERO
        if reservation is not None:
            application_total = _check_application_fee(reservation, normalized)

        records = []
        for detail in normalized:
            purpose = detail['purpose']
            if purpose == IncomeRecord.PURPOSE_BOOK_FEE:
                _apply_to_balance(balances[FeeBalance.KIND_TUITION], BOOK_SLOT, detail['amount'])
            elif purpose == IncomeRecord.PURPOSE_TUITION_FEE:
                _apply_to_balance(balances[FeeBalance.KIND_TUITION], detail['term_number'], detail['amount'])
            elif purpose == IncomeRecord.PURPOSE_TRANSPORT_FEE:
                _apply_to_balance(balances[FeeBalance.KIND_TRANSPORT], detail['term_number'], detail['amount'])

            record = IncomeRecord.objects.create(
                school=school,
                session=enrollment.session if enrollment else reservation.session,
                batch_id=batch_id,
                enrollment=enrollment,
                reservation=reservation,
                admission_no=enrollment.student.admission_number if enrollment else '',
                purpose=purpose,
                term_number=detail['term_number'],
                custom_purpose_name=detail['custom_purpose_name'],
                paid_amount=detail['amount'],
                payment_method=detail['payment_method'],
                remarks=remarks,
                collected_by=collected_by,
            )
            record.receipt_number = _receipt_number(record)
            record.save(update_fields=['receipt_number'])
            records.append(record)

        if application_total > 0:
            _stamp_application_fee(reservation, records, application_total)
        if enrollment is not None:
            _invalidate_outstanding(school.id, enrollment.id)
        transaction.on_commit(lambda: dispatch_payment_posted(school=school, records=records))

    logger.info(
        'Posted %s payment line(s) totalling %s for %s (batch %s)',
        len(records),
        sum((record.paid_amount for record in records), ZERO),
        identifier,
        batch_id,
    )
    return records
