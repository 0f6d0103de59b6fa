from django.urls import include, path

urlpatterns = [
    path('fees/', include('apps.core.fees.urls')),
    path('admissions/', include('apps.core.admissions.urls')),
    path('promotions/', include('apps.core.promotions.urls')),
]
