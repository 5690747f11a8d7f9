from django.urls import path
from . import views

urlpatterns = [
    path('', views.payment_history, name='payment_history'),
    path('all/', views.all_payments, name='all_payments'),
    path('items/', views.items, name='billable_items'),
    path('mpesa/pay/', views.mpesa_pay, name='mpesa_pay'),
    path('<int:payment_id>/status/', views.payment_status, name='payment_status'),
    path('<int:payment_id>/reconcile/', views.reconcile_payment, name='payment_reconcile'),
]
