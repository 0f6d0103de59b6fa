from django.urls import path

from .views import promotion_dropout, promotion_eligibility, promotion_promote

urlpatterns = [
    path('<slug:branch>/eligibility/', promotion_eligibility, name='promotion_eligibility_core'),
    path('<slug:branch>/promote/', promotion_promote, name='promotion_promote_core'),
    path('<slug:branch>/dropout/', promotion_dropout, name='promotion_dropout_core'),
]
