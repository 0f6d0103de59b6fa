from django.urls import path

from .views import (
    admission_payment_post,
    enrollment_balances,
    enrollment_concession_update,
    enrollment_payment_post,
    fee_dashboard,
)

urlpatterns = [
    path('<slug:branch>/enrollments/<int:enrollment_id>/payments/', enrollment_payment_post, name='enrollment_payment_post_core'),
    path('<slug:branch>/admissions/<str:admission_no>/payments/', admission_payment_post, name='admission_payment_post_core'),
    path('<slug:branch>/enrollments/<int:enrollment_id>/balances/', enrollment_balances, name='enrollment_balances_core'),
    path('<slug:branch>/enrollments/<int:enrollment_id>/concession/', enrollment_concession_update, name='enrollment_concession_update_core'),
    path('<slug:branch>/dashboard/', fee_dashboard, name='fee_dashboard_core'),
]
