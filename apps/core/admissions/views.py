from django.views.decorators.http import require_GET, require_POST

from apps.core.exceptions import LedgerValidationError
from apps.core.schools.services import resolve_branch
from apps.core.utils.responses import envelope, form_error_envelope, ledger_view, read_json

from .forms import (
    AdmissionForm,
    ApplicationFeeForm,
    ConcessionForm,
    ReservationCancelForm,
    ReservationConfirmForm,
    ReservationForm,
)
from .services import (
    cancel_reservation,
    confirm_reservation,
    create_reservation,
    enroll_reservation,
    get_reservation,
    grant_concession,
    pay_application_fee,
)


def _admission_payload(result):
    enrollment = result['enrollment']
    income = result['admission_income']
    return {
        'reservation': result['reservation'].as_dict(),
        'enrollment_id': enrollment.id if enrollment else None,
        'admission_no': enrollment.admission_no if enrollment else None,
        'admission_income': income.as_dict() if income else None,
    }


def _admission_details(payload):
    """Validate the optional nested ``admission`` object; ``None`` when absent."""
    raw = payload.get('admission')
    if raw is None:
        return None, None
    if not isinstance(raw, dict):
        raise LedgerValidationError('admission must be an object.')
    form = AdmissionForm(raw)
    if not form.is_valid():
        return None, form
    return form.admission(), None


@require_POST
@ledger_view
def reservation_create(request, branch):
    school = resolve_branch(branch)
    form = ReservationForm(read_json(request), school=school)
    if not form.is_valid():
        return form_error_envelope(form)

    data = form.cleaned_data
    fees = {
        field: data[field]
        for field in (
            'application_fee',
            'tuition_fee',
            'book_fee',
            'transport_fee',
            'tuition_concession',
            'transport_concession',
        )
        if data.get(field) is not None
    }
    reservation = create_reservation(
        school=school,
        student_name=data['student_name'],
        guardian_name=data['guardian_name'],
        phone=data['phone'],
        school_class=data['class_id'],
        session=data['session'],
        remarks=data['remarks'],
        **fees,
    )
    return envelope(reservation.as_dict(), status=201)


@require_GET
@ledger_view
def reservation_detail(request, branch, reservation_id):
    school = resolve_branch(branch)
    reservation = get_reservation(school=school, reservation_id=reservation_id)
    return envelope(reservation.as_dict())


@require_POST
@ledger_view
def reservation_confirm(request, branch, reservation_id):
    school = resolve_branch(branch)
    payload = read_json(request)
    form = ReservationConfirmForm(payload)
    if not form.is_valid():
        return form_error_envelope(form)
    admission, admission_form = _admission_details(payload)
    if admission_form is not None:
        return form_error_envelope(admission_form)

    result = confirm_reservation(
        school=school,
        reservation_id=reservation_id,
        remarks=form.cleaned_data['remarks'],
        admission=admission,
    )
    return envelope(_admission_payload(result))


@require_POST
@ledger_view
def reservation_cancel(request, branch, reservation_id):
    school = resolve_branch(branch)
    form = ReservationCancelForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    reservation = cancel_reservation(
        school=school,
        reservation_id=reservation_id,
        remarks=form.cleaned_data['remarks'],
    )
    return envelope(reservation.as_dict())


@require_POST
@ledger_view
def reservation_concession(request, branch, reservation_id):
    school = resolve_branch(branch)
    form = ConcessionForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    grant_concession(
        school=school,
        reservation_id=reservation_id,
        tuition_amount=form.cleaned_data['tuition_amount'],
        transport_amount=form.cleaned_data['transport_amount'],
        remarks=form.cleaned_data['remarks'],
    )
    reservation = get_reservation(school=school, reservation_id=reservation_id)
    return envelope(reservation.as_dict())


@require_POST
@ledger_view
def reservation_application_fee(request, branch, reservation_id):
    school = resolve_branch(branch)
    form = ApplicationFeeForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    record = pay_application_fee(
        school=school,
        reservation_id=reservation_id,
        amount=form.cleaned_data['amount'],
        payment_method=form.cleaned_data['payment_method'],
        remarks=form.cleaned_data['remarks'],
        collected_by=form.cleaned_data['collected_by'],
    )
    return envelope(record.as_dict(), status=201)


@require_POST
@ledger_view
def reservation_enroll(request, branch, reservation_id):
    school = resolve_branch(branch)
    form = AdmissionForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    result = enroll_reservation(
        school=school,
        reservation_id=reservation_id,
        admission=form.admission(),
    )
    return envelope(_admission_payload(result))
