from django.views.decorators.http import require_GET, require_POST

from apps.core.schools.services import resolve_branch
from apps.core.utils.responses import envelope, form_error_envelope, ledger_view, read_json

from .forms import DropoutForm, EligibilityFilterForm, PromoteForm
from .services import dropout, evaluate, promote


@require_GET
@ledger_view
def promotion_eligibility(request, branch):
    school = resolve_branch(branch)
    form = EligibilityFilterForm(request.GET, school=school)
    if not form.is_valid():
        return form_error_envelope(form)

    rows = evaluate(
        school=school,
        academic_session=form.cleaned_data['session'],
        school_class=form.cleaned_data['class_id'],
        search=form.cleaned_data['search'],
        require_fees_paid=form.cleaned_data['require_fees_paid'],
    )
    return envelope({
        'session': form.cleaned_data['session'].name,
        'require_fees_paid': form.cleaned_data['require_fees_paid'],
        'eligibility': rows,
    })


@require_POST
@ledger_view
def promotion_promote(request, branch):
    school = resolve_branch(branch)
    payload = read_json(request)
    form = PromoteForm(payload, school=school, enrollment_ids=payload.get('enrollment_ids'))
    if not form.is_valid():
        return form_error_envelope(form)

    promoted = promote(
        school=school,
        next_academic_session=form.cleaned_data['next_academic_session'],
        require_fees_paid=form.cleaned_data['require_fees_paid'],
        enrollment_ids=form.cleaned_data['enrollment_ids'],
        promoted_by=form.cleaned_data['promoted_by'],
    )
    return envelope({
        'promoted': [
            {
                'enrollment_id': enrollment.id,
                'promoted_from': enrollment.promoted_from_id,
                'admission_no': enrollment.admission_no,
                'class': enrollment.school_class.name,
                'section': enrollment.section.name if enrollment.section_id else None,
            }
            for enrollment in promoted
        ],
    })


@require_POST
@ledger_view
def promotion_dropout(request, branch):
    school = resolve_branch(branch)
    form = DropoutForm(read_json(request))
    if not form.is_valid():
        return form_error_envelope(form)

    enrollment = dropout(
        school=school,
        enrollment_id=form.cleaned_data['enrollment_id'],
        reason=form.cleaned_data['reason'],
        date=form.cleaned_data['date'],
        changed_by=form.cleaned_data['changed_by'],
    )
    return envelope({
        'enrollment_id': enrollment.id,
        'status': enrollment.status,
        'is_active': enrollment.is_active,
        'dropout_reason': enrollment.dropout_reason,
        'dropout_date': enrollment.dropout_date.isoformat(),
    })
