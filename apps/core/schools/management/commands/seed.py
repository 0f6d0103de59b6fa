import random
from datetime import date
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.admissions.models import Reservation
from apps.core.admissions.services import confirm_reservation, create_reservation, grant_concession
from apps.core.fees.models import IncomeRecord
from apps.core.fees.services import post_payment
from apps.core.schools.models import School


class Command(BaseCommand):
    help = 'Seeds the database with a demo branch, classes, admissions and payments.'

    def add_arguments(self, parser):
        parser.add_argument('--branch', default='demo', help='Branch code to create or reuse.')
        parser.add_argument('--students', type=int, default=5, help='Admissions per class.')
        parser.add_argument('--seed', type=int, default=None, help='Random seed for repeatable data.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding database...')

        fake = Faker()
        if options['seed'] is not None:
            Faker.seed(options['seed'])
            random.seed(options['seed'])

        school, created = School.objects.get_or_create(
            code=options['branch'],
            defaults={'name': fake.company() + ' School'},
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Successfully created school: {school.name}'))

        start_year = date.today().year
        academic_session, created = AcademicSession.objects.get_or_create(
            school=school,
            name=f'{start_year}-{str(start_year + 1)[-2:]}',
            defaults={
                'start_date': date(start_year, 4, 1),
                'end_date': date(start_year + 1, 3, 31),
                'is_active': True,
            },
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Successfully created academic session: {academic_session.name}'))

        school.current_session = academic_session
        school.save(update_fields=['current_session'])

        classes = []
        for order in range(1, 6):
            school_class, created = SchoolClass.objects.get_or_create(
                school=school,
                session=academic_session,
                name=f'Class {order}',
                defaults={
                    'display_order': order,
                    'tuition_fee': Decimal('12000.00') + Decimal(order * 1500),
                    'book_fee': Decimal('1500.00'),
                },
            )
            classes.append(school_class)
            if created:
                for section_name in ('A', 'B'):
                    Section.objects.get_or_create(school_class=school_class, name=section_name)

        admitted = 0
        for school_class in classes:
            sections = list(school_class.sections.all())
            for _ in range(options['students']):
                reservation = create_reservation(
                    school=school,
                    student_name=f'{fake.first_name()} {fake.last_name()}',
                    guardian_name=fake.name(),
                    school_class=school_class,
                    application_fee=Decimal('500.00'),
                    transport_fee=random.choice([Decimal('0.00'), Decimal('6000.00')]),
                )
                if random.random() < 0.2:
                    continue

                if random.random() < 0.5:
                    grant_concession(
                        school=school,
                        reservation_id=reservation.id,
                        tuition_amount=Decimal(random.choice([500, 1000, 2000])),
                        remarks='Sibling concession',
                    )

                result = confirm_reservation(
                    school=school,
                    reservation_id=reservation.id,
                    admission={
                        'section_id': random.choice(sections).id if sections else None,
                        'gender': random.choice(['male', 'female']),
                        'date_of_birth': fake.date_of_birth(minimum_age=5, maximum_age=15),
                    },
                )
                enrollment = result['enrollment']
                admitted += 1

                post_payment(
                    school=school,
                    enrollment_id=enrollment.id,
                    details=[
                        {
                            'purpose': IncomeRecord.PURPOSE_BOOK_FEE,
                            'amount': school_class.book_fee,
                            'payment_method': random.choice(['CASH', 'UPI', 'CARD']),
                        },
                        {
                            'purpose': IncomeRecord.PURPOSE_TUITION_FEE,
                            'term_number': 1,
                            'amount': enrollment.tuition_balance.term1_amount,
                            'payment_method': 'CASH',
                        },
                    ],
                    remarks='Seed collection',
                    collected_by='seed',
                )

        pending = Reservation.objects.for_school(school).filter(status=Reservation.STATUS_PENDING).count()
        self.stdout.write(self.style.SUCCESS(
            f'Database seeding complete! {admitted} admissions, {pending} pending reservations.'
        ))
