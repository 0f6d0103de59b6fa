import json
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.exceptions import (
    BalanceNotFound,
    ConcurrentUpdateConflict,
    EnrollmentNotFound,
    InvalidConcession,
    InvalidPaymentMethod,
    InvalidPurpose,
    InvalidTermNumber,
    LedgerValidationError,
    MissingTermNumber,
    NonPositiveAmount,
    OverpaymentRejected,
    PaymentRuleViolation,
    PersistenceFailure,
)
from apps.core.schools.models import School
from apps.core.students.services import create_enrollment, register_student

from .models import STATUS_PAID, STATUS_PARTIAL, STATUS_PENDING, IncomeRecord, TransportFeeBalance, TuitionFeeBalance
from .services import (
    _apply_to_balance,
    apply_payment,
    cached_total_outstanding,
    create_fee_balances,
    get_balance,
    post_payment,
    set_concession,
    total_outstanding,
)
from .signals import payment_posted
from .stats import get_dashboard_statistics, get_outstanding_statistics


class FeesBaseTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.today = timezone.localdate()

        self.school = School.objects.create(name='Fee School', code='fee_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2026-27',
            start_date=self.today - timedelta(days=90),
            end_date=self.today + timedelta(days=270),
            is_active=True,
        )
        self.school.current_session = self.session
        self.school.save(update_fields=['current_session'])

        self.school_class = SchoolClass.objects.create(
            school=self.school,
            session=self.session,
            name='8th',
            code='VIII',
            display_order=8,
            tuition_fee=Decimal('9000.00'),
            book_fee=Decimal('1500.00'),
        )
        self.section = Section.objects.create(school_class=self.school_class, name='A')

        self.enrollment = self.enroll('Riya', transport_fee=Decimal('4000.00'))

    def enroll(self, first_name, tuition_fee=Decimal('9000.00'), book_fee=Decimal('1500.00'), transport_fee=Decimal('0')):
        student = register_student(school=self.school, first_name=first_name)
        enrollment = create_enrollment(
            school=self.school,
            student=student,
            session=self.session,
            school_class=self.school_class,
            section=self.section,
        )
        create_fee_balances(
            enrollment=enrollment,
            tuition_fee=tuition_fee,
            book_fee=book_fee,
            transport_fee=transport_fee,
        )
        return enrollment

    def tuition(self, enrollment=None):
        return TuitionFeeBalance.objects.get(enrollment=enrollment or self.enrollment)

    def transport(self, enrollment=None):
        return TransportFeeBalance.objects.get(enrollment=enrollment or self.enrollment)


class FeeBalanceStoreTests(FeesBaseTestCase):
    def test_create_fee_balances_splits_net_fee_across_terms(self):
        tuition = self.tuition()
        self.assertEqual(
            [tuition.term1_amount, tuition.term2_amount, tuition.term3_amount],
            [Decimal('3000.00')] * 3,
        )
        self.assertEqual(tuition.net_fee, Decimal('9000.00'))
        transport = self.transport()
        self.assertEqual([transport.term1_amount, transport.term2_amount], [Decimal('2000.00')] * 2)
        self.assertEqual(transport.total_fee, Decimal('4000.00'))

    def test_rounding_remainder_lands_on_last_term(self):
        enrollment = self.enroll('Asha', tuition_fee=Decimal('10000.00'))
        tuition = self.tuition(enrollment)
        self.assertEqual(tuition.term1_amount, Decimal('3333.33'))
        self.assertEqual(tuition.term2_amount, Decimal('3333.33'))
        self.assertEqual(tuition.term3_amount, Decimal('3333.34'))
        self.assertFalse(TransportFeeBalance.objects.filter(enrollment=enrollment).exists())

    def test_term_status_follows_paid_amount(self):
        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=1,
            amount=Decimal('1000'),
        )
        tuition = self.tuition()
        self.assertEqual(tuition.term_balance(1), Decimal('2000.00'))
        self.assertEqual(tuition.term_status(1), STATUS_PARTIAL)
        self.assertEqual(tuition.term_status(2), STATUS_PENDING)

        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=1,
            amount=Decimal('2000'),
        )
        tuition = self.tuition()
        self.assertEqual(tuition.term_balance(1), Decimal('0.00'))
        self.assertEqual(tuition.term_status(1), STATUS_PAID)
        self.assertEqual(tuition.version, 3)

    def test_book_slot_is_tracked_on_tuition_balance(self):
        balance = apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot='BOOK',
            amount=Decimal('500'),
        )
        self.assertEqual(balance.book_paid, Decimal('500.00'))
        self.assertEqual(balance.book_status, STATUS_PARTIAL)

        with self.assertRaises(InvalidTermNumber):
            apply_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                kind='TRANSPORT',
                slot='BOOK',
                amount=Decimal('100'),
            )

    def test_overpayment_is_rejected_and_balance_unchanged(self):
        with self.assertRaises(OverpaymentRejected) as ctx:
            apply_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                kind='TRANSPORT',
                slot=2,
                amount=Decimal('2000.01'),
            )
        self.assertEqual(ctx.exception.identifier, self.enrollment.id)
        self.assertEqual(self.transport().term2_paid, Decimal('0.00'))

    def test_payment_against_zero_amount_slot_is_rejected(self):
        enrollment = self.enroll('Kabir', book_fee=Decimal('0'))
        with self.assertRaises(OverpaymentRejected):
            apply_payment(
                school=self.school,
                enrollment_id=enrollment.id,
                kind='TUITION',
                slot='BOOK',
                amount=Decimal('10'),
            )

    def test_get_balance_errors(self):
        other = self.enroll('Meera')
        with self.assertRaises(BalanceNotFound):
            get_balance(school=self.school, enrollment_id=other.id, kind='TRANSPORT')
        with self.assertRaises(EnrollmentNotFound):
            get_balance(school=self.school, enrollment_id=999999, kind='TUITION')

    def test_total_outstanding_includes_terms_book_and_transport(self):
        self.assertEqual(
            total_outstanding(school=self.school, enrollment_id=self.enrollment.id),
            Decimal('14500.00'),
        )

    def test_set_concession_rederives_unpaid_term_amounts(self):
        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=1,
            amount=Decimal('3000'),
        )
        balance = set_concession(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            amount=Decimal('900'),
        )
        self.assertEqual(balance.net_fee, Decimal('8100.00'))
        self.assertEqual(balance.term1_amount, Decimal('3000.00'))
        self.assertEqual(balance.term2_amount, Decimal('2700.00'))
        self.assertEqual(balance.term3_amount, Decimal('2400.00'))
        self.assertEqual(balance.term_status(1), STATUS_PAID)
        self.assertEqual(balance.terms_balance, Decimal('5100.00'))

    def test_concession_after_paid_term_only_reduces_what_is_owed(self):
        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=1,
            amount=Decimal('3000'),
        )
        balance = set_concession(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            amount=Decimal('3000'),
        )

        self.assertEqual(
            [balance.term_amount(term) for term in (1, 2, 3)],
            [Decimal('3000.00'), Decimal('2000.00'), Decimal('1000.00')],
        )
        self.assertEqual(balance.terms_balance, Decimal('3000.00'))

        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=2,
            amount=Decimal('2000'),
        )
        apply_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            kind='TUITION',
            slot=3,
            amount=Decimal('1000'),
        )
        tuition = self.tuition()
        self.assertEqual(tuition.terms_balance, Decimal('0.00'))
        self.assertEqual(tuition.term1_paid + tuition.term2_paid + tuition.term3_paid, tuition.net_fee)

    def test_set_concession_above_actual_fee_is_rejected(self):
        with self.assertRaises(InvalidConcession):
            set_concession(
                school=self.school,
                enrollment_id=self.enrollment.id,
                kind='TRANSPORT',
                amount=Decimal('4000.01'),
            )
        self.assertEqual(self.transport().concession_amount, Decimal('0.00'))

    def test_stale_version_raises_conflict(self):
        stale = self.tuition()
        TuitionFeeBalance.objects.filter(pk=stale.pk).update(version=stale.version + 1)

        with self.assertRaises(ConcurrentUpdateConflict) as ctx:
            _apply_to_balance(stale, 1, Decimal('100'))
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.tuition().term1_paid, Decimal('0.00'))


class PostPaymentTests(FeesBaseTestCase):
    def test_partial_then_full_term_payment(self):
        enrollment = self.enroll('Dev', tuition_fee=Decimal('15000.00'))
        apply_payment(
            school=self.school,
            enrollment_id=enrollment.id,
            kind='TUITION',
            slot=1,
            amount=Decimal('2000'),
        )

        records = post_payment(
            school=self.school,
            enrollment_id=enrollment.id,
            details=[{'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '3000', 'payment_method': 'CASH'}],
        )

        tuition = self.tuition(enrollment)
        self.assertEqual(tuition.term1_paid, Decimal('5000.00'))
        self.assertEqual(tuition.term_balance(1), Decimal('0.00'))
        self.assertEqual(tuition.term_status(1), STATUS_PAID)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].paid_amount, Decimal('3000.00'))

    def test_multi_detail_payment_updates_each_balance(self):
        records = post_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            details=[
                {'purpose': 'BOOK_FEE', 'amount': '1500', 'payment_method': 'UPI'},
                {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '3000', 'payment_method': 'CASH'},
                {'purpose': 'TRANSPORT_FEE', 'term_number': 1, 'amount': '2000', 'payment_method': 'CARD'},
            ],
            remarks='Counter collection',
            collected_by='accountant',
        )

        self.assertEqual(len(records), 3)
        self.assertEqual(len({record.batch_id for record in records}), 1)
        for record in records:
            self.assertTrue(record.receipt_number.startswith(f'RCP-{self.school.id}-'))
            self.assertEqual(record.admission_no, self.enrollment.student.admission_number)
            self.assertEqual(record.collected_by, 'accountant')

        tuition = self.tuition()
        self.assertEqual(tuition.book_status, STATUS_PAID)
        self.assertEqual(tuition.term_status(1), STATUS_PAID)
        self.assertEqual(self.transport().term_status(1), STATUS_PAID)
        self.assertEqual(
            total_outstanding(school=self.school, enrollment_id=self.enrollment.id),
            Decimal('8000.00'),
        )

    def test_payment_by_admission_number(self):
        records = post_payment(
            school=self.school,
            admission_no=self.enrollment.student.admission_number,
            details=[{'purpose': 'ADMISSION_FEE', 'amount': '3000'}],
        )
        self.assertEqual(records[0].enrollment_id, self.enrollment.id)
        self.assertEqual(records[0].payment_method, IncomeRecord.METHOD_CASH)
        self.assertIsNone(records[0].term_number)

    def test_failure_in_later_detail_rolls_back_everything(self):
        with self.assertRaises(OverpaymentRejected):
            post_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                details=[
                    {'purpose': 'BOOK_FEE', 'amount': '1500'},
                    {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '3000'},
                    {'purpose': 'TRANSPORT_FEE', 'term_number': 1, 'amount': '2500'},
                ],
            )

        self.assertEqual(IncomeRecord.objects.count(), 0)
        tuition = self.tuition()
        self.assertEqual(tuition.book_paid, Decimal('0.00'))
        self.assertEqual(tuition.term1_paid, Decimal('0.00'))
        self.assertEqual(tuition.version, 1)

    def test_storage_failure_on_second_detail_rolls_back_and_is_retryable(self):
        original_create = IncomeRecord.objects.create
        calls = []

        def flaky_create(**kwargs):
            calls.append(kwargs['purpose'])
            if len(calls) == 2:
                raise DatabaseError('disk I/O error')
            return original_create(**kwargs)

        with mock.patch.object(IncomeRecord.objects, 'create', side_effect=flaky_create):
            with self.assertRaises(PersistenceFailure) as ctx:
                post_payment(
                    school=self.school,
                    enrollment_id=self.enrollment.id,
                    details=[
                        {'purpose': 'BOOK_FEE', 'amount': '1500'},
                        {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '3000'},
                        {'purpose': 'TRANSPORT_FEE', 'term_number': 1, 'amount': '2000'},
                    ],
                )

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(calls, ['BOOK_FEE', 'TUITION_FEE'])
        self.assertEqual(IncomeRecord.objects.count(), 0)
        self.assertEqual(self.tuition().book_paid, Decimal('0.00'))
        self.assertEqual(self.tuition().term1_paid, Decimal('0.00'))
        self.assertEqual(self.transport().term1_paid, Decimal('0.00'))

    def test_detail_validation_errors(self):
        cases = [
            ([], LedgerValidationError),
            ([{'purpose': 'CANTEEN', 'amount': '10'}], InvalidPurpose),
            ([{'purpose': 'APPLICATION_FEE', 'amount': '10'}], InvalidPurpose),
            ([{'purpose': 'BOOK_FEE', 'amount': '10', 'payment_method': 'CHEQUE'}], InvalidPaymentMethod),
            ([{'purpose': 'TUITION_FEE', 'amount': '10'}], MissingTermNumber),
            ([{'purpose': 'TRANSPORT_FEE', 'term_number': 3, 'amount': '10'}], InvalidTermNumber),
            ([{'purpose': 'ADMISSION_FEE', 'term_number': 1, 'amount': '10'}], InvalidTermNumber),
            ([{'purpose': 'BOOK_FEE', 'amount': '0'}], NonPositiveAmount),
            ([{'purpose': 'BOOK_FEE', 'amount': '-5'}], NonPositiveAmount),
            ([{'purpose': 'BOOK_FEE', 'amount': 'abc'}], NonPositiveAmount),
            ([{'purpose': 'BOOK_FEE', 'amount': '10.555'}], LedgerValidationError),
            ([{'purpose': 'OTHER', 'amount': '10', 'custom_purpose_name': 'ID'}], PaymentRuleViolation),
            (
                [{'purpose': 'BOOK_FEE', 'amount': '10'}, {'purpose': 'BOOK_FEE', 'amount': '10'}],
                PaymentRuleViolation,
            ),
            (
                [
                    {'purpose': 'OTHER', 'amount': '10', 'custom_purpose_name': 'Uniform'},
                    {'purpose': 'OTHER', 'amount': '20', 'custom_purpose_name': 'uniform'},
                ],
                PaymentRuleViolation,
            ),
        ]
        for details, error in cases:
            with self.subTest(details=details):
                with self.assertRaises(error):
                    post_payment(school=self.school, enrollment_id=self.enrollment.id, details=details)

        self.assertEqual(IncomeRecord.objects.count(), 0)

    def test_non_finite_and_oversized_amounts_are_rejected(self):
        for raw_amount in ('NaN', 'Infinity', '-Infinity', 'sNaN', float('nan')):
            with self.subTest(amount=raw_amount):
                with self.assertRaises(NonPositiveAmount):
                    post_payment(
                        school=self.school,
                        enrollment_id=self.enrollment.id,
                        details=[{'purpose': 'ADMISSION_FEE', 'amount': raw_amount}],
                    )

        for raw_amount in ('12345678901234.00', '1e30', '10000000000.00'):
            with self.subTest(amount=raw_amount):
                with self.assertRaises(LedgerValidationError) as ctx:
                    post_payment(
                        school=self.school,
                        enrollment_id=self.enrollment.id,
                        details=[{'purpose': 'OTHER', 'amount': raw_amount, 'custom_purpose_name': 'Donation'}],
                    )
                self.assertEqual(ctx.exception.details['max_amount'], '9999999999.99')

        self.assertEqual(IncomeRecord.objects.count(), 0)

    def test_other_payment_keeps_custom_purpose_name(self):
        records = post_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            details=[{'purpose': 'OTHER', 'amount': '250', 'custom_purpose_name': ' Uniform '}],
        )
        self.assertEqual(records[0].custom_purpose_name, 'Uniform')

    @override_settings(FEE_PAYMENT_REQUIRE_SEQUENTIAL_TERMS=True)
    def test_sequential_terms_rule(self):
        with self.assertRaises(PaymentRuleViolation):
            post_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                details=[
                    {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '100'},
                    {'purpose': 'TUITION_FEE', 'term_number': 3, 'amount': '100'},
                ],
            )

    @override_settings(FEE_PAYMENT_REQUIRE_BOOK_FEE_FIRST=True)
    def test_book_fee_first_rule(self):
        with self.assertRaises(PaymentRuleViolation):
            post_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                details=[{'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '100'}],
            )

        records = post_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            details=[
                {'purpose': 'BOOK_FEE', 'amount': '1500'},
                {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '100'},
            ],
        )
        self.assertEqual(len(records), 2)

    def test_unknown_enrollment(self):
        with self.assertRaises(EnrollmentNotFound):
            post_payment(
                school=self.school,
                enrollment_id=424242,
                details=[{'purpose': 'BOOK_FEE', 'amount': '10'}],
            )

    def test_payment_posted_sent_after_commit(self):
        received = []

        def receiver(sender, school, records, **kwargs):
            received.append((school, [record.id for record in records]))

        payment_posted.connect(receiver)
        self.addCleanup(payment_posted.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            records = post_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                details=[{'purpose': 'BOOK_FEE', 'amount': '1500'}],
            )

        self.assertEqual(received, [(self.school, [records[0].id])])

    def test_failing_receiver_does_not_affect_ledger(self):
        def broken_receiver(sender, **kwargs):
            raise RuntimeError('printer offline')

        payment_posted.connect(broken_receiver)
        self.addCleanup(payment_posted.disconnect, broken_receiver)

        with self.assertLogs('apps.core.fees.signals', level='ERROR'):
            with self.captureOnCommitCallbacks(execute=True):
                post_payment(
                    school=self.school,
                    enrollment_id=self.enrollment.id,
                    details=[{'purpose': 'BOOK_FEE', 'amount': '1500'}],
                )

        self.assertEqual(IncomeRecord.objects.count(), 1)
        self.assertEqual(self.tuition().book_paid, Decimal('1500.00'))

    def test_cached_outstanding_is_invalidated_after_payment(self):
        self.assertEqual(
            cached_total_outstanding(school=self.school, enrollment_id=self.enrollment.id),
            Decimal('14500.00'),
        )
        with self.captureOnCommitCallbacks(execute=True):
            post_payment(
                school=self.school,
                enrollment_id=self.enrollment.id,
                details=[{'purpose': 'TRANSPORT_FEE', 'term_number': 2, 'amount': '2000'}],
            )
        self.assertEqual(
            cached_total_outstanding(school=self.school, enrollment_id=self.enrollment.id),
            Decimal('12500.00'),
        )

    def test_income_records_are_immutable(self):
        record = post_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            details=[{'purpose': 'BOOK_FEE', 'amount': '100'}],
        )[0]

        record.paid_amount = Decimal('1.00')
        with self.assertRaises(ValidationError):
            record.save()
        with self.assertRaises(ValidationError):
            record.delete()
        self.assertEqual(IncomeRecord.objects.get(pk=record.pk).paid_amount, Decimal('100.00'))


class FeeStatsTests(FeesBaseTestCase):
    def test_dashboard_uses_collections_and_outstanding(self):
        second = self.enroll('Zoya')
        post_payment(
            school=self.school,
            enrollment_id=self.enrollment.id,
            details=[
                {'purpose': 'BOOK_FEE', 'amount': '1500'},
                {'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '3000', 'payment_method': 'UPI'},
            ],
        )

        stats = get_dashboard_statistics(self.school)

        collections = stats['collections']
        self.assertEqual(collections['collected_today'], Decimal('4500.00'))
        self.assertEqual(collections['collected_this_month'], Decimal('4500.00'))
        self.assertEqual(collections['receipts_today'], 2)
        self.assertEqual(collections['by_purpose']['BOOK_FEE']['total'], Decimal('1500.00'))
        self.assertEqual(collections['by_payment_method']['UPI'], Decimal('3000.00'))

        outstanding = stats['outstanding']
        expected = (
            total_outstanding(school=self.school, enrollment_id=self.enrollment.id)
            + total_outstanding(school=self.school, enrollment_id=second.id)
        )
        self.assertEqual(outstanding['total_outstanding'], expected)
        self.assertEqual(outstanding['active_enrollments'], 2)
        self.assertEqual(outstanding['students_with_dues'], 2)

    def test_outstanding_statistics_read_balances_in_one_query_on_cold_cache(self):
        for first_name in ('Zoya', 'Kabir', 'Meera'):
            self.enroll(first_name)
        cache.clear()

        with self.assertNumQueries(2):
            cold = get_outstanding_statistics(self.school)
        with self.assertNumQueries(1):
            warm = get_outstanding_statistics(self.school)

        self.assertEqual(cold, warm)
        self.assertEqual(cold['active_enrollments'], 4)
        self.assertEqual(cold['total_outstanding'], Decimal('46000.00'))
        self.assertEqual(
            cached_total_outstanding(school=self.school, enrollment_id=self.enrollment.id),
            Decimal('14500.00'),
        )


class FeeViewTests(FeesBaseTestCase):
    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_post_payment_view_returns_records(self):
        url = reverse('enrollment_payment_post_core', args=[self.school.code, self.enrollment.id])
        response = self.post_json(url, {
            'details': [{'purpose': 'BOOK_FEE', 'amount': '1500', 'payment_method': 'UPI'}],
            'remarks': 'Paid at counter',
        })

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertIsNone(body['error'])
        self.assertEqual(body['data']['records'][0]['purpose'], 'BOOK_FEE')
        self.assertEqual(Decimal(body['data']['total_paid']), Decimal('1500.00'))

    def test_post_payment_view_maps_overpayment(self):
        url = reverse('admission_payment_post_core', args=[self.school.code, self.enrollment.student.admission_number])
        response = self.post_json(url, {
            'details': [{'purpose': 'TUITION_FEE', 'term_number': 1, 'amount': '5000'}],
        })

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['error']['code'], 'OVERPAYMENT_REJECTED')
        self.assertEqual(body['error']['identifier'], self.enrollment.id)

    def test_post_payment_view_rejects_non_finite_and_oversized_amounts(self):
        url = reverse('enrollment_payment_post_core', args=[self.school.code, self.enrollment.id])
        response = self.client.post(
            url,
            data='{"details": [{"purpose": "ADMISSION_FEE", "amount": NaN}]}',
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'NON_POSITIVE_AMOUNT')

        response = self.client.post(
            url,
            data=json.dumps({'details': [{'purpose': 'ADMISSION_FEE', 'amount': '12345678901234.00'}]}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'VALIDATION_ERROR')

    def test_post_payment_view_requires_details(self):
        url = reverse('enrollment_payment_post_core', args=[self.school.code, self.enrollment.id])
        response = self.post_json(url, {'details': []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'VALIDATION_ERROR')

    def test_unknown_branch_is_404(self):
        url = reverse('enrollment_balances_core', args=['nowhere', self.enrollment.id])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error']['code'], 'BRANCH_NOT_FOUND')

    def test_balances_view(self):
        url = reverse('enrollment_balances_core', args=[self.school.code, self.enrollment.id])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(len(data['tuition']['terms']), 3)
        self.assertEqual(len(data['transport']['terms']), 2)
        self.assertEqual(Decimal(data['total_outstanding']), Decimal('14500.00'))

    def test_concession_view(self):
        url = reverse('enrollment_concession_update_core', args=[self.school.code, self.enrollment.id])
        response = self.post_json(url, {'kind': 'TRANSPORT', 'amount': '1000'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.transport().term1_amount, Decimal('1500.00'))

    def test_dashboard_view(self):
        url = reverse('fee_dashboard_core', args=[self.school.code])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()['data']['outstanding']['total_outstanding']), Decimal('14500.00'))

    def test_get_on_post_endpoint_is_rejected(self):
        url = reverse('enrollment_payment_post_core', args=[self.school.code, self.enrollment.id])
        self.assertEqual(self.client.get(url).status_code, 405)
