from django.urls import path
from . import views

urlpatterns = [
    path('token', views.token, name='mpesa_token'),
    path('stkpush', views.stkpush, name='mpesa_stkpush'),
    path('status', views.status, name='mpesa_status'),
]
