from django.contrib import admin
from .models import Payment

@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('reference_number', 'student', 'amount', 'category', 'month', 'status', 'payment_date')
    search_fields = ('reference_number', 'checkout_request_id', 'merchant_request_id', 'transaction_code')
    list_filter = ('status', 'category', 'month')
    readonly_fields = ('checkout_request_id', 'merchant_request_id', 'result_code', 'result_desc')
