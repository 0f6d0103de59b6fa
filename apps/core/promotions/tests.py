import json
from datetime import date, timedelta
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.exceptions import InvalidTransition, LedgerValidationError, PromotionBlocked
from apps.core.fees.models import TuitionFeeBalance
from apps.core.fees.services import create_fee_balances, post_payment, total_outstanding
from apps.core.schools.models import School
from apps.core.students.models import Enrollment, EnrollmentStatusHistory
from apps.core.students.services import create_enrollment, register_student

from .services import dropout, evaluate, promote


class PromotionBaseTestCase(TestCase):
    def setUp(self):
        self.today = timezone.localdate()
        self.school = School.objects.create(name='Promotion School', code='promo_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2026-27',
            start_date=self.today - timedelta(days=200),
            end_date=self.today + timedelta(days=160),
            is_active=True,
        )
        self.next_session = AcademicSession.objects.create(
            school=self.school,
            name='2027-28',
            start_date=self.today + timedelta(days=161),
            end_date=self.today + timedelta(days=525),
        )
        self.school.current_session = self.session
        self.school.save(update_fields=['current_session'])

        self.class_one = SchoolClass.objects.create(
            school=self.school,
            session=self.session,
            name='1st',
            display_order=1,
            tuition_fee=Decimal('3000.00'),
        )
        self.section_a = Section.objects.create(school_class=self.class_one, name='A')

        SchoolClass.objects.create(
            school=self.school,
            session=self.next_session,
            name='1st',
            display_order=1,
            tuition_fee=Decimal('3000.00'),
        )
        self.next_class_two = SchoolClass.objects.create(
            school=self.school,
            session=self.next_session,
            name='2nd',
            display_order=2,
            tuition_fee=Decimal('3600.00'),
            book_fee=Decimal('900.00'),
        )
        self.next_section_a = Section.objects.create(school_class=self.next_class_two, name='A')

        self.paid = self.enroll('Ishaan')
        post_payment(
            school=self.school,
            enrollment_id=self.paid.id,
            details=[
                {'purpose': 'TUITION_FEE', 'term_number': term, 'amount': '1000'}
                for term in (1, 2, 3)
            ],
        )
        self.owing = self.enroll('Tara')

    def enroll(self, first_name):
        student = register_student(school=self.school, first_name=first_name, last_name='Verma')
        enrollment = create_enrollment(
            school=self.school,
            student=student,
            session=self.session,
            school_class=self.class_one,
            section=self.section_a,
        )
        create_fee_balances(enrollment=enrollment, tuition_fee=self.class_one.tuition_fee)
        return enrollment

    def reload(self, enrollment):
        return Enrollment.objects.get(pk=enrollment.pk)


class EvaluateTests(PromotionBaseTestCase):
    def test_eligibility_when_fees_must_be_paid(self):
        rows = {row['enrollment_id']: row for row in evaluate(school=self.school, academic_session=self.session)}

        self.assertTrue(rows[self.paid.id]['is_promotable'])
        self.assertEqual(rows[self.paid.id]['total_pending_amount'], Decimal('0.00'))
        self.assertFalse(rows[self.owing.id]['is_promotable'])
        self.assertEqual(rows[self.owing.id]['total_pending_amount'], Decimal('3000.00'))
        self.assertEqual(
            rows[self.owing.id]['total_pending_amount'],
            total_outstanding(school=self.school, enrollment_id=self.owing.id),
        )
        self.assertEqual(rows[self.owing.id]['current_class'], '1st')

    def test_eligibility_when_fees_are_not_required(self):
        rows = evaluate(school=self.school, academic_session=self.session, require_fees_paid=False)
        self.assertEqual(len(rows), 2)
        self.assertTrue(all(row['is_promotable'] for row in rows))

    def test_search_and_inactive_enrollments(self):
        rows = evaluate(school=self.school, academic_session=self.session, search='tara')
        self.assertEqual([row['enrollment_id'] for row in rows], [self.owing.id])

        dropout(school=self.school, enrollment_id=self.owing.id, reason='Relocated', date=self.today)
        rows = evaluate(school=self.school, academic_session=self.session)
        self.assertEqual([row['enrollment_id'] for row in rows], [self.paid.id])


class PromoteTests(PromotionBaseTestCase):
    def test_promote_moves_to_next_class_with_fresh_balances(self):
        promoted = promote(
            school=self.school,
            next_academic_session=self.next_session,
            require_fees_paid=True,
            enrollment_ids=[self.paid.id],
            promoted_by='principal',
        )

        self.assertEqual(len(promoted), 1)
        new_enrollment = promoted[0]
        self.assertEqual(new_enrollment.school_class, self.next_class_two)
        self.assertEqual(new_enrollment.section, self.next_section_a)
        self.assertEqual(new_enrollment.session, self.next_session)
        self.assertEqual(new_enrollment.promoted_from_id, self.paid.id)
        self.assertTrue(new_enrollment.is_active)

        old = self.reload(self.paid)
        self.assertEqual(old.status, Enrollment.STATUS_PROMOTED)
        self.assertFalse(old.is_active)
        self.assertIsNotNone(old.promoted_at)

        tuition = TuitionFeeBalance.objects.get(enrollment=new_enrollment)
        self.assertEqual(tuition.actual_fee, Decimal('3600.00'))
        self.assertEqual(tuition.book_fee, Decimal('900.00'))
        self.assertEqual(tuition.term1_amount, Decimal('1200.00'))

        history = EnrollmentStatusHistory.objects.get(enrollment=old)
        self.assertEqual(history.changed_by, 'principal')
        self.assertEqual(history.new_status, Enrollment.STATUS_PROMOTED)

    def test_one_ineligible_enrollment_blocks_whole_batch(self):
        with self.assertRaises(PromotionBlocked) as ctx:
            promote(
                school=self.school,
                next_academic_session=self.next_session,
                require_fees_paid=True,
                enrollment_ids=[self.paid.id, self.owing.id],
            )

        self.assertIn(str(self.owing.id), ctx.exception.details['blocked'])
        self.assertNotIn(str(self.paid.id), ctx.exception.details['blocked'])
        self.assertEqual(Enrollment.objects.filter(session=self.next_session).count(), 0)
        self.assertTrue(self.reload(self.paid).is_active)

    def test_promotion_without_fee_requirement_carries_no_dues(self):
        promoted = promote(
            school=self.school,
            next_academic_session=self.next_session,
            require_fees_paid=False,
            enrollment_ids=[self.owing.id],
        )
        self.assertEqual(len(promoted), 1)
        old_balance = TuitionFeeBalance.objects.get(enrollment=self.owing)
        self.assertEqual(old_balance.terms_balance, Decimal('3000.00'))

    def test_already_promoted_enrollment_is_blocked(self):
        promote(
            school=self.school,
            next_academic_session=self.next_session,
            require_fees_paid=True,
            enrollment_ids=[self.paid.id],
        )
        with self.assertRaises(PromotionBlocked):
            promote(
                school=self.school,
                next_academic_session=self.next_session,
                require_fees_paid=True,
                enrollment_ids=[self.paid.id],
            )

    def test_missing_next_class_blocks(self):
        self.next_class_two.is_active = False
        self.next_class_two.save(update_fields=['is_active'])
        with self.assertRaises(PromotionBlocked):
            promote(
                school=self.school,
                next_academic_session=self.next_session,
                require_fees_paid=False,
                enrollment_ids=[self.paid.id],
            )

    def test_empty_batch_is_rejected(self):
        with self.assertRaises(LedgerValidationError):
            promote(
                school=self.school,
                next_academic_session=self.next_session,
                require_fees_paid=True,
                enrollment_ids=[],
            )


class DropoutTests(PromotionBaseTestCase):
    def test_dropout_is_terminal_and_keeps_balances(self):
        enrollment = dropout(
            school=self.school,
            enrollment_id=self.owing.id,
            reason='Family relocation',
            date=date(2026, 11, 2),
        )

        self.assertEqual(enrollment.status, Enrollment.STATUS_DROPPED_OUT)
        self.assertFalse(enrollment.is_active)
        stored = self.reload(self.owing)
        self.assertEqual(stored.dropout_reason, 'Family relocation')
        self.assertEqual(stored.dropout_date, date(2026, 11, 2))
        self.assertEqual(
            total_outstanding(school=self.school, enrollment_id=self.owing.id),
            Decimal('3000.00'),
        )

        with self.assertRaises(InvalidTransition):
            dropout(school=self.school, enrollment_id=self.owing.id, reason='Again', date=self.today)

    def test_dropout_requires_reason(self):
        with self.assertRaises(LedgerValidationError):
            dropout(school=self.school, enrollment_id=self.owing.id, reason='  ', date=self.today)
        self.assertTrue(self.reload(self.owing).is_active)


class PromotionViewTests(PromotionBaseTestCase):
    def post_json(self, name, payload):
        url = reverse(name, args=[self.school.code])
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_eligibility_endpoint(self):
        url = reverse('promotion_eligibility_core', args=[self.school.code])
        response = self.client.get(url, {'require_fees_paid': 'false'})
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertFalse(data['require_fees_paid'])
        self.assertEqual(len(data['eligibility']), 2)

    def test_promote_endpoint_reports_blocked_batch(self):
        response = self.post_json('promotion_promote_core', {
            'next_academic_session': self.next_session.id,
            'require_fees_paid': True,
            'enrollment_ids': [self.paid.id, self.owing.id],
        })
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error']['code'], 'PROMOTION_BLOCKED')

    def test_promote_endpoint(self):
        response = self.post_json('promotion_promote_core', {
            'next_academic_session': self.next_session.id,
            'enrollment_ids': [self.paid.id],
        })
        self.assertEqual(response.status_code, 200)
        promoted = response.json()['data']['promoted']
        self.assertEqual(promoted[0]['promoted_from'], self.paid.id)
        self.assertEqual(promoted[0]['class'], '2nd')

    def test_dropout_endpoint_requires_reason(self):
        response = self.post_json('promotion_dropout_core', {
            'enrollment_id': self.owing.id,
            'date': '2026-11-02',
        })
        self.assertEqual(response.status_code, 400)

        response = self.post_json('promotion_dropout_core', {
            'enrollment_id': self.owing.id,
            'reason': 'Transferred',
            'date': '2026-11-02',
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['status'], 'DROPPED_OUT')
