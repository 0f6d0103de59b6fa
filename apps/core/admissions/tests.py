import json
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.exceptions import (
    ApplicationFeeUnpaid,
    ConcessionLocked,
    InvalidConcession,
    InvalidTransition,
    OverpaymentRejected,
    ReservationNotFound,
)
from apps.core.fees.models import IncomeRecord, TransportFeeBalance, TuitionFeeBalance
from apps.core.fees.services import post_payment
from apps.core.schools.models import School
from apps.core.students.models import Enrollment, Student

from .models import Reservation, ReservationStatusHistory
from .services import (
    cancel_reservation,
    confirm_reservation,
    create_reservation,
    enroll_reservation,
    grant_concession,
    pay_application_fee,
)


class AdmissionsBaseTestCase(TestCase):
    def setUp(self):
        self.today = timezone.localdate()
        self.school = School.objects.create(name='Admissions School', code='adm_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2026-27',
            start_date=self.today - timedelta(days=30),
            end_date=self.today + timedelta(days=330),
            is_active=True,
        )
        self.school.current_session = self.session
        self.school.save(update_fields=['current_session'])

        self.school_class = SchoolClass.objects.create(
            school=self.school,
            session=self.session,
            name='1st',
            display_order=1,
            tuition_fee=Decimal('12000.00'),
            book_fee=Decimal('2000.00'),
        )
        self.section = Section.objects.create(school_class=self.school_class, name='A')

        self.reservation = create_reservation(
            school=self.school,
            student_name='Anaya Sharma',
            guardian_name='Rohit Sharma',
            school_class=self.school_class,
            application_fee=Decimal('500.00'),
            transport_fee=Decimal('6000.00'),
        )

    def reload(self, reservation=None):
        return Reservation.objects.get(pk=(reservation or self.reservation).pk)


class ReservationLifecycleTests(AdmissionsBaseTestCase):
    def test_create_reservation_snapshots_class_fees(self):
        reservation = self.reservation
        self.assertEqual(reservation.status, Reservation.STATUS_PENDING)
        self.assertFalse(reservation.concession_lock)
        self.assertEqual(reservation.tuition_fee, Decimal('12000.00'))
        self.assertEqual(reservation.book_fee, Decimal('2000.00'))
        self.assertEqual(reservation.session, self.session)
        self.assertEqual(reservation.reservation_no, f'RES-{self.school.id}-{reservation.id:06d}')

    def test_concession_then_confirm_then_locked(self):
        grant_concession(
            school=self.school,
            reservation_id=self.reservation.id,
            tuition_amount=Decimal('500'),
            remarks='Staff ward',
        )
        reservation = self.reload()
        self.assertEqual(reservation.tuition_concession, Decimal('500.00'))
        self.assertFalse(reservation.concession_lock)

        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        reservation = self.reload()
        self.assertEqual(reservation.status, Reservation.STATUS_CONFIRMED)
        self.assertTrue(reservation.concession_lock)
        self.assertIsNotNone(reservation.confirmed_at)

        with self.assertRaises(ConcessionLocked):
            grant_concession(
                school=self.school,
                reservation_id=self.reservation.id,
                tuition_amount=Decimal('1000'),
            )
        reservation = self.reload()
        self.assertEqual(reservation.tuition_concession, Decimal('500.00'))
        self.assertTrue(reservation.concession_lock)

    def test_concession_cannot_exceed_fee(self):
        with self.assertRaises(InvalidConcession):
            grant_concession(
                school=self.school,
                reservation_id=self.reservation.id,
                transport_amount=Decimal('6000.01'),
            )
        self.assertEqual(self.reload().transport_concession, Decimal('0.00'))

    def test_cancel_only_from_pending(self):
        cancel_reservation(school=self.school, reservation_id=self.reservation.id, remarks='Moved city')
        reservation = self.reload()
        self.assertEqual(reservation.status, Reservation.STATUS_CANCELLED)
        self.assertIsNotNone(reservation.cancelled_at)
        self.assertFalse(reservation.concession_lock)

        with self.assertRaises(InvalidTransition):
            confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        with self.assertRaises(InvalidTransition):
            cancel_reservation(school=self.school, reservation_id=self.reservation.id)

        history = ReservationStatusHistory.objects.get(reservation=self.reservation)
        self.assertEqual(history.old_status, Reservation.STATUS_PENDING)
        self.assertEqual(history.new_status, Reservation.STATUS_CANCELLED)
        self.assertEqual(history.remarks, 'Moved city')

    def test_confirmed_reservation_cannot_be_cancelled(self):
        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        with self.assertRaises(InvalidTransition):
            cancel_reservation(school=self.school, reservation_id=self.reservation.id)

    def test_unknown_reservation(self):
        with self.assertRaises(ReservationNotFound):
            confirm_reservation(school=self.school, reservation_id=987654)

    def test_reservation_from_other_branch_is_not_found(self):
        other = School.objects.create(name='Other School', code='other_school')
        with self.assertRaises(ReservationNotFound):
            cancel_reservation(school=other, reservation_id=self.reservation.id)


class ApplicationFeeTests(AdmissionsBaseTestCase):
    def test_application_fee_is_recorded_and_stamped(self):
        record = pay_application_fee(
            school=self.school,
            reservation_id=self.reservation.id,
            amount=Decimal('500'),
            payment_method='UPI',
        )

        reservation = self.reload()
        self.assertEqual(record.purpose, IncomeRecord.PURPOSE_APPLICATION_FEE)
        self.assertEqual(record.reservation_id, reservation.id)
        self.assertIsNone(record.enrollment_id)
        self.assertEqual(reservation.application_income_id, record.id)
        self.assertEqual(reservation.application_fee_paid, Decimal('500.00'))
        self.assertEqual(reservation.status, Reservation.STATUS_PENDING)

    def test_application_fee_overpayment_is_rejected(self):
        with self.assertRaises(OverpaymentRejected):
            pay_application_fee(
                school=self.school,
                reservation_id=self.reservation.id,
                amount=Decimal('600'),
                payment_method='CASH',
            )
        self.assertEqual(IncomeRecord.objects.count(), 0)

    @override_settings(ADMISSIONS_REQUIRE_APPLICATION_FEE=True)
    def test_confirm_can_require_application_fee(self):
        with self.assertRaises(ApplicationFeeUnpaid):
            confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        self.assertFalse(self.reload().concession_lock)

        pay_application_fee(
            school=self.school,
            reservation_id=self.reservation.id,
            amount=Decimal('500'),
            payment_method='CASH',
        )
        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        self.assertEqual(self.reload().status, Reservation.STATUS_CONFIRMED)

    @override_settings(ADMISSIONS_REQUIRE_APPLICATION_FEE=True)
    def test_application_fee_posted_directly_counts_towards_reservation(self):
        records = post_payment(
            school=self.school,
            reservation_id=self.reservation.id,
            details=[
                {'purpose': 'APPLICATION_FEE', 'amount': '200'},
                {'purpose': 'OTHER', 'amount': '50', 'custom_purpose_name': 'Prospectus'},
            ],
        )
        reservation = self.reload()
        self.assertEqual(reservation.application_fee_paid, Decimal('200.00'))
        self.assertEqual(reservation.application_income_id, records[0].id)

        with self.assertRaises(OverpaymentRejected):
            post_payment(
                school=self.school,
                reservation_id=self.reservation.id,
                details=[{'purpose': 'APPLICATION_FEE', 'amount': '300.01'}],
            )
        self.assertEqual(self.reload().application_fee_paid, Decimal('200.00'))

        pay_application_fee(
            school=self.school,
            reservation_id=self.reservation.id,
            amount=Decimal('300'),
        )
        reservation = self.reload()
        self.assertEqual(reservation.application_fee_paid, Decimal('500.00'))
        self.assertEqual(reservation.application_income_id, records[0].id)

        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        self.assertEqual(self.reload().status, Reservation.STATUS_CONFIRMED)

    def test_application_fee_on_cancelled_reservation_is_rejected(self):
        cancel_reservation(school=self.school, reservation_id=self.reservation.id)
        with self.assertRaises(InvalidTransition):
            pay_application_fee(school=self.school, reservation_id=self.reservation.id, amount=Decimal('100'))
        self.assertEqual(IncomeRecord.objects.count(), 0)


class EnrollmentFromReservationTests(AdmissionsBaseTestCase):
    def admission(self, **overrides):
        data = {'section_id': self.section.id, 'gender': 'female', 'payment_method': 'CASH'}
        data.update(overrides)
        return data

    def test_confirm_with_admission_enrolls_student(self):
        grant_concession(
            school=self.school,
            reservation_id=self.reservation.id,
            tuition_amount=Decimal('1200'),
            transport_amount=Decimal('1000'),
        )

        result = confirm_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(),
        )

        enrollment = result['enrollment']
        reservation = self.reload()
        self.assertTrue(reservation.is_enrolled)
        self.assertEqual(enrollment.reservation_id, reservation.id)
        self.assertEqual(enrollment.section, self.section)
        self.assertEqual(enrollment.student.first_name, 'Anaya')
        self.assertEqual(enrollment.student.last_name, 'Sharma')
        self.assertEqual(enrollment.student.guardian_name, 'Rohit Sharma')

        tuition = TuitionFeeBalance.objects.get(enrollment=enrollment)
        self.assertEqual(tuition.concession_amount, Decimal('1200.00'))
        self.assertEqual(tuition.net_fee, Decimal('10800.00'))
        self.assertEqual(tuition.term1_amount, Decimal('3600.00'))
        self.assertEqual(tuition.book_fee, Decimal('2000.00'))
        transport = TransportFeeBalance.objects.get(enrollment=enrollment)
        self.assertEqual(transport.total_fee, Decimal('5000.00'))

        income = result['admission_income']
        self.assertEqual(income.purpose, IncomeRecord.PURPOSE_ADMISSION_FEE)
        self.assertEqual(income.paid_amount, Decimal('3000.00'))
        self.assertEqual(reservation.admission_income_id, income.id)

    def test_double_confirm_is_idempotent(self):
        first = confirm_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(),
        )
        second = confirm_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(),
        )

        self.assertEqual(first['enrollment'].id, second['enrollment'].id)
        self.assertEqual(first['admission_income'].id, second['admission_income'].id)
        self.assertEqual(Enrollment.objects.filter(reservation=self.reservation).count(), 1)
        self.assertEqual(Student.objects.count(), 1)
        self.assertEqual(
            IncomeRecord.objects.filter(purpose=IncomeRecord.PURPOSE_ADMISSION_FEE).count(),
            1,
        )
        self.assertEqual(
            ReservationStatusHistory.objects.filter(new_status=Reservation.STATUS_CONFIRMED).count(),
            1,
        )

    def test_retried_confirm_completes_enrollment(self):
        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        self.assertFalse(self.reload().is_enrolled)

        result = confirm_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(admission_fee=Decimal('2500')),
        )
        self.assertTrue(self.reload().is_enrolled)
        self.assertEqual(result['admission_income'].paid_amount, Decimal('2500.00'))

    def test_enroll_requires_confirmed_reservation(self):
        with self.assertRaises(InvalidTransition):
            enroll_reservation(school=self.school, reservation_id=self.reservation.id, admission=self.admission())
        self.assertEqual(Enrollment.objects.count(), 0)

    def test_enroll_without_admission_fee(self):
        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        result = enroll_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(admission_fee=Decimal('0')),
        )
        self.assertIsNone(result['admission_income'])
        self.assertTrue(self.reload().is_enrolled)
        self.assertEqual(IncomeRecord.objects.count(), 0)

    def test_enrollment_concession_respects_reservation_lock(self):
        result = confirm_reservation(
            school=self.school,
            reservation_id=self.reservation.id,
            admission=self.admission(),
        )
        with self.assertRaises(ConcessionLocked):
            grant_concession(
                school=self.school,
                enrollment_id=result['enrollment'].id,
                tuition_amount=Decimal('100'),
            )
        tuition = TuitionFeeBalance.objects.get(enrollment=result['enrollment'])
        self.assertEqual(tuition.concession_amount, Decimal('0.00'))


class AdmissionsViewTests(AdmissionsBaseTestCase):
    def post_json(self, name, payload, *args):
        url = reverse(name, args=[self.school.code, *args])
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_create_and_confirm_through_api(self):
        response = self.post_json('reservation_create_core', {
            'student_name': 'Kabir Rao',
            'class_id': self.school_class.id,
            'application_fee': '300',
        })
        self.assertEqual(response.status_code, 201)
        reservation_id = response.json()['data']['reservation_id']

        response = self.post_json(
            'reservation_confirm_core',
            {'remarks': 'Documents verified', 'admission': {'section_id': self.section.id}},
            reservation_id,
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertTrue(data['reservation']['concession_lock'])
        self.assertTrue(data['reservation']['is_enrolled'])
        self.assertIsNotNone(data['enrollment_id'])
        self.assertEqual(data['admission_income']['purpose'], 'ADMISSION_FEE')

    def test_locked_concession_is_conflict(self):
        confirm_reservation(school=self.school, reservation_id=self.reservation.id)
        response = self.post_json('reservation_concession_core', {'tuition_amount': '100'}, self.reservation.id)
        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body['error']['code'], 'CONCESSION_LOCKED')
        self.assertEqual(body['error']['identifier'], self.reservation.id)

    def test_application_fee_endpoint(self):
        response = self.post_json(
            'reservation_application_fee_core',
            {'amount': '500', 'payment_method': 'CARD'},
            self.reservation.id,
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.reload().application_income_id, response.json()['data']['income_id'])

    def test_cancel_endpoint_rejects_second_cancel(self):
        self.assertEqual(self.post_json('reservation_cancel_core', {}, self.reservation.id).status_code, 200)
        response = self.post_json('reservation_cancel_core', {}, self.reservation.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'INVALID_TRANSITION')

    def test_detail_endpoint(self):
        url = reverse('reservation_detail_core', args=[self.school.code, self.reservation.id])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['reservation_no'], self.reservation.reservation_no)
