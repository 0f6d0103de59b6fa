from io import StringIO

from django.core.management import call_command
from django.test import TestCase

from apps.core.admissions.models import Reservation
from apps.core.exceptions import BranchNotFound
from apps.core.fees.models import IncomeRecord
from apps.core.students.models import Enrollment

from .models import School
from .services import resolve_branch


class BranchResolutionTests(TestCase):
    def test_resolve_branch_by_code_is_case_insensitive(self):
        school = School.objects.create(name='North Campus', code='north')
        self.assertEqual(resolve_branch('NORTH'), school)

    def test_inactive_or_unknown_branch_raises(self):
        School.objects.create(name='Closed Campus', code='closed', is_active=False)
        for code in ('closed', 'missing', ''):
            with self.subTest(code=code):
                with self.assertRaises(BranchNotFound):
                    resolve_branch(code)

    def test_code_is_generated_from_name(self):
        first = School.objects.create(name='Green Valley School')
        second = School.objects.create(name='Green Valley School')
        self.assertEqual(first.code, 'green_valley_school')
        self.assertEqual(second.code, 'green_valley_school_1')


class SeedCommandTests(TestCase):
    def test_seed_creates_ledger_demo_data(self):
        out = StringIO()
        call_command('seed', branch='seeded', students=2, seed=7, stdout=out)

        school = School.objects.get(code='seeded')
        self.assertIsNotNone(school.current_session)
        self.assertEqual(Reservation.objects.filter(school=school).count(), 10)

        enrolled = Enrollment.objects.filter(school=school).count()
        self.assertEqual(Reservation.objects.filter(school=school, is_enrolled=True).count(), enrolled)
        self.assertEqual(
            IncomeRecord.objects.filter(school=school, purpose=IncomeRecord.PURPOSE_ADMISSION_FEE).count(),
            enrolled,
        )
        self.assertIn('Database seeding complete!', out.getvalue())
