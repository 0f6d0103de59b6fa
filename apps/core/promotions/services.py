from __future__ import annotations

import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.exceptions import (
    EnrollmentNotFound,
    InvalidTransition,
    LedgerValidationError,
    PromotionBlocked,
)
from apps.core.fees.models import TransportFeeBalance, TuitionFeeBalance
from apps.core.fees.services import create_fee_balances, enrollment_outstanding, outstanding_amount, persistence_guard
from apps.core.students.models import Enrollment
from apps.core.students.services import change_enrollment_status, create_enrollment, get_enrollment

logger = logging.getLogger(__name__)


def _eligibility_row(enrollment: Enrollment, require_fees_paid):
    pending = enrollment_outstanding(enrollment)
    is_promotable = enrollment.is_active and (not require_fees_paid or pending == 0)
    return {
        'enrollment_id': enrollment.id,
        'admission_no': enrollment.admission_no,
        'student_name': enrollment.student.full_name,
        'current_class': enrollment.school_class.name,
        'section': enrollment.section.name if enrollment.section_id else None,
        'total_pending_amount': pending,
        'is_promotable': is_promotable,
    }


def evaluate(*, school, academic_session, school_class=None, search='', require_fees_paid=True):
    """Promotion eligibility of every active enrollment in a session."""
    enrollments = (
        Enrollment.objects.for_school(school)
        .filter(session=academic_session, is_active=True)
        .select_related('student', 'school_class', 'section', 'tuition_balance', 'transport_balance')
    )
    if school_class is not None:
        enrollments = enrollments.filter(school_class=school_class)

    search = (search or '').strip()
    if search:
        enrollments = enrollments.filter(
            Q(student__first_name__icontains=search)
            | Q(student__last_name__icontains=search)
            | Q(student__admission_number__icontains=search)
        )

    return [_eligibility_row(enrollment, require_fees_paid) for enrollment in enrollments]


def _same_name_section(enrollment: Enrollment, next_class):
    if not enrollment.section_id:
        return None
    return next_class.sections.filter(name=enrollment.section.name, is_active=True).first()


def promote(*, school, next_academic_session, require_fees_paid=True, enrollment_ids=(), promoted_by=''):
    """
    Move a batch of enrollments into the next class of ``next_academic_session``.

    Eligibility is re-checked on locked rows. A single ineligible enrollment
    blocks the whole batch and nothing is written.
    """
    enrollment_ids = sorted({int(enrollment_id) for enrollment_id in enrollment_ids})
    if not enrollment_ids:
        raise LedgerValidationError('Select at least one enrollment to promote.')
    if next_academic_session is None or next_academic_session.school_id != school.id:
        raise LedgerValidationError('Next academic session must belong to selected school.')

    with persistence_guard(enrollment_ids[0]), transaction.atomic():
        enrollments = list(
            Enrollment.objects.for_school(school)
            .select_for_update(of=('self',))
            .select_related('student', 'school_class', 'section', 'session')
            .filter(pk__in=enrollment_ids)
            .order_by('id')
        )
        missing = set(enrollment_ids) - {enrollment.id for enrollment in enrollments}
        if missing:
            raise EnrollmentNotFound(
                f"Enrollments {sorted(missing)} do not exist.",
                identifier=sorted(missing)[0],
                details={'missing': sorted(missing)},
            )

        blocked = {}
        targets = {}
        for enrollment in enrollments:
            # Re-read balances inside the lock; select_related data may be stale.
            pending = outstanding_amount(
                TuitionFeeBalance.objects.filter(enrollment=enrollment).first(),
                TransportFeeBalance.objects.filter(enrollment=enrollment).first(),
            )
            next_class = enrollment.school_class.next_class(next_academic_session)
            if not enrollment.is_active:
                blocked[enrollment.id] = f"Enrollment is {enrollment.status.lower()}."
            elif enrollment.session_id == next_academic_session.id:
                blocked[enrollment.id] = 'Enrollment already belongs to the target session.'
            elif require_fees_paid and pending > 0:
                blocked[enrollment.id] = f"Pending fees of {pending}."
            elif next_class is None:
                blocked[enrollment.id] = 'No next class is configured.'
            else:
                targets[enrollment.id] = next_class

        if blocked:
            first_id = next(iter(blocked))
            raise PromotionBlocked(
                f"{len(blocked)} enrollment(s) cannot be promoted.",
                identifier=first_id,
                details={'blocked': {str(key): reason for key, reason in blocked.items()}},
            )

        promoted = []
        now = timezone.now()
        for enrollment in enrollments:
            next_class = targets[enrollment.id]
            enrollment.promoted_at = now
            change_enrollment_status(
                enrollment,
                Enrollment.STATUS_PROMOTED,
                changed_by=promoted_by,
                reason=f"Promoted to {next_class.name}",
            )
            new_enrollment = create_enrollment(
                school=school,
                student=enrollment.student,
                session=next_academic_session,
                school_class=next_class,
                section=_same_name_section(enrollment, next_class),
                promoted_from=enrollment,
            )
            create_fee_balances(
                enrollment=new_enrollment,
                tuition_fee=next_class.tuition_fee,
                book_fee=next_class.book_fee,
            )
            promoted.append(new_enrollment)

    logger.info(
        'Promoted %s enrollment(s) into session %s',
        len(promoted),
        next_academic_session.name,
    )
    return promoted


def dropout(*, school, enrollment_id, reason, date=None, changed_by=''):
    """Terminal exit from an enrollment. Fee balances stay as they are."""
    reason = (reason or '').strip()
    if not reason:
        raise LedgerValidationError('Dropout reason is required.', identifier=enrollment_id)
    if date is None:
        raise LedgerValidationError('Dropout date is required.', identifier=enrollment_id)

    with persistence_guard(enrollment_id), transaction.atomic():
        enrollment = get_enrollment(school=school, enrollment_id=enrollment_id, for_update=True)
        if not enrollment.is_active:
            raise InvalidTransition(
                f"Enrollment '{enrollment_id}' is {enrollment.status.lower()} and cannot be dropped out.",
                identifier=enrollment_id,
                details={'status': enrollment.status},
            )
        enrollment.dropout_reason = reason[:255]
        enrollment.dropout_date = date
        change_enrollment_status(
            enrollment,
            Enrollment.STATUS_DROPPED_OUT,
            changed_by=changed_by,
            reason=reason,
        )

    logger.info('Enrollment %s dropped out on %s', enrollment_id, date)
    return enrollment
