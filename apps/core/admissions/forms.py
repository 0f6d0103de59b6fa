from django import forms

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass
from apps.core.fees.models import IncomeRecord
from apps.core.students.models import Student


class ReservationForm(forms.Form):
    student_name = forms.CharField(max_length=200)
    guardian_name = forms.CharField(max_length=120, required=False)
    phone = forms.CharField(max_length=20, required=False)
    class_id = forms.ModelChoiceField(queryset=SchoolClass.objects.none(), required=False)
    session = forms.ModelChoiceField(queryset=AcademicSession.objects.none(), required=False)
    application_fee = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    tuition_fee = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    book_fee = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    transport_fee = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    tuition_concession = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    transport_concession = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    remarks = forms.CharField(max_length=255, required=False)

    def __init__(self, *args, **kwargs):
        self.school = kwargs.pop('school', None)
        super().__init__(*args, **kwargs)
        if not self.school:
            return
        self.fields['class_id'].queryset = SchoolClass.objects.filter(school=self.school, is_active=True)
        self.fields['session'].queryset = AcademicSession.objects.filter(school=self.school)

    def clean(self):
        cleaned = super().clean()
        school_class = cleaned.get('class_id')
        session = cleaned.get('session')
        if school_class and session and school_class.session_id != session.id:
            raise forms.ValidationError('Class does not belong to selected session.')
        return cleaned


class AdmissionForm(forms.Form):
    first_name = forms.CharField(max_length=100, required=False)
    last_name = forms.CharField(max_length=100, required=False)
    gender = forms.ChoiceField(choices=Student.GENDER_CHOICES, required=False)
    date_of_birth = forms.DateField(required=False)
    guardian_name = forms.CharField(max_length=120, required=False)
    phone = forms.CharField(max_length=20, required=False)
    class_id = forms.IntegerField(min_value=1, required=False)
    section_id = forms.IntegerField(min_value=1, required=False)
    roll_number = forms.CharField(max_length=20, required=False)
    admission_fee = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    payment_method = forms.ChoiceField(choices=IncomeRecord.PAYMENT_METHOD_CHOICES, required=False)
    collected_by = forms.CharField(max_length=150, required=False)

    def admission(self):
        """Cleaned data without blanks so service defaults apply."""
        return {key: value for key, value in self.cleaned_data.items() if value not in (None, '')}


class ReservationConfirmForm(forms.Form):
    remarks = forms.CharField(max_length=255, required=False)


class ReservationCancelForm(forms.Form):
    remarks = forms.CharField(max_length=255, required=False)


class ConcessionForm(forms.Form):
    tuition_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    transport_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    remarks = forms.CharField(max_length=255, required=False)

    def clean(self):
        cleaned = super().clean()
        if cleaned.get('tuition_amount') is None and cleaned.get('transport_amount') is None:
            raise forms.ValidationError('Provide a tuition or transport concession amount.')
        return cleaned


class ApplicationFeeForm(forms.Form):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0.01)
    payment_method = forms.ChoiceField(choices=IncomeRecord.PAYMENT_METHOD_CHOICES)
    remarks = forms.CharField(max_length=255, required=False)
    collected_by = forms.CharField(max_length=150, required=False)
