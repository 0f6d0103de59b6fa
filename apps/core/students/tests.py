from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import TestCase
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.exceptions import EnrollmentNotFound
from apps.core.schools.models import School

from .models import Enrollment, EnrollmentStatusHistory
from .services import change_enrollment_status, create_enrollment, get_enrollment, register_student


class EnrollmentRegistryTests(TestCase):
    def setUp(self):
        today = timezone.localdate()
        self.school = School.objects.create(name='Registry School', code='registry_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2026-27',
            start_date=today - timedelta(days=10),
            end_date=today + timedelta(days=350),
            is_active=True,
        )
        self.school_class = SchoolClass.objects.create(
            school=self.school,
            session=self.session,
            name='5th',
            display_order=5,
            tuition_fee=Decimal('6000.00'),
        )
        self.section = Section.objects.create(school_class=self.school_class, name='B')
        self.student = register_student(school=self.school, first_name=' Nisha ', last_name='Rao')

    def test_register_student_assigns_admission_number(self):
        self.assertEqual(self.student.admission_number, f'ADM-{self.school.id}-{self.student.id:06d}')
        self.assertEqual(self.student.full_name, 'Nisha Rao')

    def test_register_student_requires_first_name(self):
        with self.assertRaises(ValidationError):
            register_student(school=self.school, first_name='  ')

    def test_enrollment_rejects_class_from_other_session(self):
        other_session = AcademicSession.objects.create(
            school=self.school,
            name='2027-28',
            start_date=self.session.end_date + timedelta(days=1),
            end_date=self.session.end_date + timedelta(days=365),
        )
        with self.assertRaises(ValidationError):
            create_enrollment(
                school=self.school,
                student=self.student,
                session=other_session,
                school_class=self.school_class,
            )

    def test_one_enrollment_per_student_and_session(self):
        create_enrollment(school=self.school, student=self.student, session=self.session, school_class=self.school_class)
        with self.assertRaises(ValidationError):
            create_enrollment(
                school=self.school,
                student=self.student,
                session=self.session,
                school_class=self.school_class,
            )

    def test_get_enrollment_by_admission_number(self):
        enrollment = create_enrollment(
            school=self.school,
            student=self.student,
            session=self.session,
            school_class=self.school_class,
            section=self.section,
            roll_number='7',
        )
        found = get_enrollment(school=self.school, admission_no=self.student.admission_number)
        self.assertEqual(found.id, enrollment.id)
        self.assertEqual(found.admission_no, self.student.admission_number)

        other_school = School.objects.create(name='Elsewhere', code='elsewhere')
        with self.assertRaises(EnrollmentNotFound):
            get_enrollment(school=other_school, enrollment_id=enrollment.id)

    def test_inactive_enrollment_is_not_found_by_admission_number(self):
        enrollment = create_enrollment(
            school=self.school,
            student=self.student,
            session=self.session,
            school_class=self.school_class,
        )
        change_enrollment_status(enrollment, Enrollment.STATUS_DROPPED_OUT, reason='Left')

        with self.assertRaises(EnrollmentNotFound):
            get_enrollment(school=self.school, admission_no=self.student.admission_number)
        self.assertEqual(get_enrollment(school=self.school, enrollment_id=enrollment.id).status, 'DROPPED_OUT')

    def test_status_change_keeps_active_flag_in_step(self):
        enrollment = create_enrollment(
            school=self.school,
            student=self.student,
            session=self.session,
            school_class=self.school_class,
        )
        history = change_enrollment_status(enrollment, Enrollment.STATUS_PROMOTED, changed_by='office')

        enrollment.refresh_from_db()
        self.assertFalse(enrollment.is_active)
        self.assertEqual(history.old_status, Enrollment.STATUS_ACTIVE)
        self.assertEqual(EnrollmentStatusHistory.objects.filter(enrollment=enrollment).count(), 1)
        self.assertIsNone(change_enrollment_status(enrollment, Enrollment.STATUS_PROMOTED))

    def test_active_flag_must_match_status_in_database(self):
        enrollment = create_enrollment(
            school=self.school,
            student=self.student,
            session=self.session,
            school_class=self.school_class,
        )
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Enrollment.objects.filter(pk=enrollment.pk).update(status=Enrollment.STATUS_DROPPED_OUT)
