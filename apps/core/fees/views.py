from django.views.decorators.http import require_GET, require_POST

from apps.core.schools.services import resolve_branch
from apps.core.students.services import get_enrollment
from apps.core.utils.responses import envelope, form_error_envelope, ledger_view, read_json

from .forms import BalanceConcessionForm, DashboardFilterForm, PaymentPostForm
from .models import TransportFeeBalance, TuitionFeeBalance
from .services import outstanding_amount, post_payment, set_concession
from .stats import get_dashboard_statistics


def _post_payment_response(request, school, **target):
    payload = read_json(request)
    form = PaymentPostForm(payload, details=payload.get('details'))
    if not form.is_valid():
        return form_error_envelope(form)

    records = post_payment(
        school=school,
        details=form.cleaned_data['details'],
        remarks=form.cleaned_data['remarks'],
        collected_by=form.cleaned_data['collected_by'],
        **target,
    )
    return envelope(
        {
            'batch_id': str(records[0].batch_id),
            'total_paid': sum(record.paid_amount for record in records),
            'records': [record.as_dict() for record in records],
        },
        status=201,
    )


@require_POST
@ledger_view
def enrollment_payment_post(request, branch, enrollment_id):
    school = resolve_branch(branch)
    return _post_payment_response(request, school, enrollment_id=enrollment_id)


@require_POST
@ledger_view
def admission_payment_post(request, branch, admission_no):
    school = resolve_branch(branch)
    return _post_payment_response(request, school, admission_no=admission_no)


@require_GET
@ledger_view
def enrollment_balances(request, branch, enrollment_id):
    school = resolve_branch(branch)
    enrollment = get_enrollment(school=school, enrollment_id=enrollment_id)
    tuition = TuitionFeeBalance.objects.for_school(school).filter(enrollment=enrollment).first()
    transport = TransportFeeBalance.objects.for_school(school).filter(enrollment=enrollment).first()

    return envelope({
        'enrollment_id': enrollment.id,
        'admission_no': enrollment.admission_no,
        'student_name': enrollment.student.full_name,
        'class': enrollment.school_class.name,
        'tuition': tuition.as_dict() if tuition else None,
        'transport': transport.as_dict() if transport else None,
        'total_outstanding': outstanding_amount(tuition, transport),
    })


@require_POST
@ledger_view
def enrollment_concession_update(request, branch, enrollment_id):
    school = resolve_branch(branch)
    form = BalanceConcessionForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    balance = set_concession(
        school=school,
        enrollment_id=enrollment_id,
        kind=form.cleaned_data['kind'],
        amount=form.cleaned_data['amount'],
    )
    return envelope(balance.as_dict())


@require_GET
@ledger_view
def fee_dashboard(request, branch):
    school = resolve_branch(branch)
    form = DashboardFilterForm(request.GET, school=school)
    if not form.is_valid():
        return form_error_envelope(form)

    return envelope(get_dashboard_statistics(
        school,
        session=form.cleaned_data['session'],
        as_of=form.cleaned_data['as_of'],
    ))
