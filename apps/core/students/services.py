from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from apps.core.exceptions import EnrollmentNotFound

from .models import Enrollment, EnrollmentStatusHistory, Student

logger = logging.getLogger(__name__)


def _admission_number(student: Student) -> str:
    return f"ADM-{student.school_id}-{student.id:06d}"


@transaction.atomic
def register_student(*, school, first_name, last_name='', **extra) -> Student:
    first_name = (first_name or '').strip()
    if not first_name:
        raise ValidationError('Student first name is required.')

    student = Student.objects.create(
        school=school,
        first_name=first_name[:100],
        last_name=(last_name or '').strip()[:100],
        **extra,
    )
    student.admission_number = _admission_number(student)
    student.save(update_fields=['admission_number'])
    return student


@transaction.atomic
def create_enrollment(
    *,
    school,
    student: Student,
    session,
    school_class,
    section=None,
    roll_number=None,
    reservation=None,
    promoted_from=None,
) -> Enrollment:
    enrollment = Enrollment(
        school=school,
        session=session,
        student=student,
        school_class=school_class,
        section=section,
        roll_number=roll_number,
        reservation=reservation,
        promoted_from=promoted_from,
    )
    enrollment.full_clean(exclude=['reservation', 'promoted_from'])
    enrollment.save()
    logger.info(
        'Enrolled %s into %s for session %s',
        student.admission_number,
        school_class.name,
        session.name,
    )
    return enrollment


def get_enrollment(*, school, enrollment_id=None, admission_no=None, for_update=False) -> Enrollment:
    """Resolve exactly one enrollment by id, or the active enrollment of an admission number."""
    queryset = Enrollment.objects.for_school(school).select_related(
        'student', 'school_class', 'session', 'reservation'
    )
    if for_update:
        queryset = queryset.select_for_update(of=('self',))

    if enrollment_id is not None:
        enrollment = queryset.filter(pk=enrollment_id).first()
        identifier = enrollment_id
    elif admission_no:
        matches = list(queryset.filter(student__admission_number=admission_no, is_active=True)[:2])
        enrollment = matches[0] if len(matches) == 1 else None
        identifier = admission_no
    else:
        raise EnrollmentNotFound('Enrollment id or admission number is required.')

    if enrollment is None:
        raise EnrollmentNotFound(f"Enrollment '{identifier}' does not exist.", identifier=identifier)
    return enrollment


@transaction.atomic
def change_enrollment_status(enrollment: Enrollment, new_status: str, changed_by='', reason: str = ''):
    allowed_statuses = {choice[0] for choice in Enrollment.STATUS_CHOICES}
    if new_status not in allowed_statuses:
        raise ValidationError('Invalid enrollment status.')

    old_status = enrollment.status
    if old_status == new_status:
        return None

    enrollment.status = new_status
    enrollment.is_active = new_status == Enrollment.STATUS_ACTIVE
    enrollment.save(update_fields=['status', 'is_active', 'promoted_at', 'dropout_reason', 'dropout_date', 'updated_at'])

    return EnrollmentStatusHistory.objects.create(
        enrollment=enrollment,
        old_status=old_status,
        new_status=new_status,
        changed_by=(changed_by or '')[:150],
        reason=(reason or '')[:255],
    )
