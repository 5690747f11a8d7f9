from django.http import JsonResponse

def index(request):
    return JsonResponse({
        "message": "Hostel Payments API",
        "endpoints": {
            "admin": "/admin/",
            "available_rooms": "/bookings/rooms/available/",
            "book_room": "/bookings/rooms/<room_id>/book/",
            "my_booking": "/bookings/mine/",
            "booking_requests": "/bookings/requests/",
            "billable_items": "/payments/items/",
            "mpesa_pay": "/payments/mpesa/pay/",
            "payment_history": "/payments/",
            "payment_status": "/payments/<payment_id>/status/",
            "payment_reconcile": "/payments/<payment_id>/reconcile/",
            "mpesa_token": "/api/mpesa/token",
            "mpesa_stkpush": "/api/mpesa/stkpush",
            "mpesa_status": "/api/mpesa/status",
        }
    })
