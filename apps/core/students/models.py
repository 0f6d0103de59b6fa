from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class Student(models.Model):
    GENDER_CHOICES = (
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='students')
    objects = SchoolManager()

    # Assigned from the primary key right after insert.
    admission_number = models.CharField(max_length=50, null=True, blank=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    admission_date = models.DateField(default=timezone.localdate)
    guardian_name = models.CharField(max_length=120, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['admission_number', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'admission_number'],
                name='unique_student_admission_number_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active']),
        ]

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self):
        return f"{self.admission_number} - {self.full_name}"


class Enrollment(models.Model):
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_PROMOTED = 'PROMOTED'
    STATUS_DROPPED_OUT = 'DROPPED_OUT'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PROMOTED, 'Promoted'),
        (STATUS_DROPPED_OUT, 'Dropped Out'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='enrollments')
    session = models.ForeignKey(AcademicSession, on_delete=models.CASCADE, related_name='enrollments')
    objects = SchoolManager()

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='enrollments')
    school_class = models.ForeignKey(SchoolClass, on_delete=models.PROTECT, related_name='enrollments')
    section = models.ForeignKey(
        Section,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='enrollments',
    )
    roll_number = models.CharField(max_length=20, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    is_active = models.BooleanField(default=True)

    reservation = models.ForeignKey(
        'admissions.Reservation',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='enrollments',
    )
    promoted_from = models.OneToOneField(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='promoted_to',
    )
    promoted_at = models.DateTimeField(null=True, blank=True)
    dropout_reason = models.CharField(max_length=255, blank=True)
    dropout_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['school_class__display_order', 'roll_number', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'session'],
                name='unique_enrollment_per_student_session',
            ),
            models.UniqueConstraint(
                fields=['school', 'session', 'school_class', 'section', 'roll_number'],
                condition=Q(roll_number__isnull=False),
                name='unique_roll_per_section_in_session',
            ),
            models.CheckConstraint(
                condition=Q(is_active=True, status='ACTIVE') | (Q(is_active=False) & ~Q(status='ACTIVE')),
                name='enrollment_active_flag_matches_status',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'session', 'is_active']),
            models.Index(fields=['school', 'session', 'school_class']),
        ]

    @property
    def admission_no(self):
        return self.student.admission_number

    def clean(self):
        super().clean()
        if self.session_id and self.session.school_id != self.school_id:
            raise ValidationError({'session': 'Session must belong to selected school.'})
        if self.student_id and self.student.school_id != self.school_id:
            raise ValidationError({'student': 'Student must belong to selected school.'})
        if self.school_class_id:
            if self.school_class.school_id != self.school_id:
                raise ValidationError({'school_class': 'Class must belong to selected school.'})
            if self.school_class.session_id != self.session_id:
                raise ValidationError({'school_class': 'Class must belong to selected session.'})
        if self.section_id and self.section.school_class_id != self.school_class_id:
            raise ValidationError({'section': 'Section does not belong to selected class.'})
        if self.roll_number == '':
            self.roll_number = None

    def __str__(self):
        return f"{self.student.admission_number} - {self.school_class.name} ({self.session.name})"


class EnrollmentStatusHistory(models.Model):
    enrollment = models.ForeignKey(Enrollment, on_delete=models.CASCADE, related_name='status_history')
    old_status = models.CharField(max_length=20, choices=Enrollment.STATUS_CHOICES)
    new_status = models.CharField(max_length=20, choices=Enrollment.STATUS_CHOICES)
    changed_by = models.CharField(max_length=150, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-changed_at', '-id']

    def __str__(self):
        return f"{self.enrollment_id}: {self.old_status} -> {self.new_status}"
