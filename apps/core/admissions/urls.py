from django.urls import path

from .views import (
    reservation_application_fee,
    reservation_cancel,
    reservation_concession,
    reservation_confirm,
    reservation_create,
    reservation_detail,
    reservation_enroll,
)

urlpatterns = [
    path('<slug:branch>/reservations/', reservation_create, name='reservation_create_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/', reservation_detail, name='reservation_detail_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/confirm/', reservation_confirm, name='reservation_confirm_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/cancel/', reservation_cancel, name='reservation_cancel_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/concession/', reservation_concession, name='reservation_concession_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/application-fee/', reservation_application_fee, name='reservation_application_fee_core'),
    path('<slug:branch>/reservations/<int:reservation_id>/enroll/', reservation_enroll, name='reservation_enroll_core'),
]
