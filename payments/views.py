import json
import re

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from bookings.services import aget_approved_booking
from hostel_project.decorators import json_login_required, json_staff_required
from .billing import billable_items
from .exceptions import (
    ChargeRejected,
    DuplicatePayment,
    GatewayUnavailable,
    PaymentAbandoned,
    PaymentError,
    PaymentTimeout,
    UserCancelled,
)
from .models import Payment
from .services.reconciliation import PaymentReconciler

MONTH_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')


def payment_to_dict(payment):
    return {
        'id': payment.id,
        'student_id': payment.student_id,
        'amount': str(payment.amount),
        'category': payment.category,
        'status': payment.status,
        'payment_date': payment.payment_date.isoformat(),
        'payment_method': payment.payment_method,
        'reference_number': payment.reference_number,
        'month': payment.month,
        'items': payment.items,
        'checkout_request_id': payment.checkout_request_id,
        'transaction_code': payment.transaction_code,
        'result_code': payment.result_code,
        'result_desc': payment.result_desc,
    }


def _error(exc, status):
    body = {'error': exc.message}
    if exc.payment is not None:
        body['payment'] = payment_to_dict(exc.payment)
    return JsonResponse(body, status=status)


@require_GET
@json_login_required
async def items(request):
    user = await request.auser()
    booking = await aget_approved_booking(user)
    room = booking.room if booking else None
    return JsonResponse({
        'items': [dict(item, amount=str(item['amount'])) for item in billable_items(room)],
        'has_room': room is not None,
    })


@csrf_exempt
@require_POST
@json_login_required
async def mpesa_pay(request):
    """Run one STK push attempt and answer once it is settled.

    Body: {"phone_number": "07...", "month": "YYYY-MM", "items": ["room", ...]}
    """
    try:
        data = json.loads(request.body.decode('utf-8') or '{}')
    except (ValueError, UnicodeDecodeError):
        return JsonResponse({'error': 'Invalid JSON'}, status=400)
    if not isinstance(data, dict):
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    month = str(data.get('month') or '')
    if not MONTH_PATTERN.match(month):
        return JsonResponse({'error': 'month must be in YYYY-MM format'}, status=400)

    selected = data.get('items')
    if selected is not None and not isinstance(selected, list):
        return JsonResponse({'error': 'items must be a list'}, status=400)

    user = await request.auser()
    reconciler = PaymentReconciler()
    try:
        payment = await reconciler.pay(user, data.get('phone_number'), month, selected)
    except DuplicatePayment as e:
        return _error(e, 409)
    except (UserCancelled, PaymentTimeout) as e:
        return _error(e, 402)
    except PaymentAbandoned as e:
        return _error(e, 202)
    except ChargeRejected as e:
        return _error(e, 400)
    except GatewayUnavailable as e:
        return _error(e, 502)
    except PaymentError as e:
        return _error(e, 400)

    return JsonResponse({
        'message': f"Payment completed successfully! Reference: {payment.reference_number}",
        'payment': payment_to_dict(payment),
    })


@require_GET
@json_login_required
def payment_history(request):
    payments = Payment.objects.filter(student=request.user).order_by('-payment_date')
    return JsonResponse({'payments': [payment_to_dict(p) for p in payments]})


@require_GET
@json_staff_required
def all_payments(request):
    qs = Payment.objects.order_by('-payment_date')
    if request.GET.get('status'):
        qs = qs.filter(status=request.GET['status'])
    if request.GET.get('month'):
        qs = qs.filter(month=request.GET['month'])
    if request.GET.get('student'):
        if not request.GET['student'].isdigit():
            return JsonResponse({'error': 'student must be a numeric id'}, status=400)
        qs = qs.filter(student_id=request.GET['student'])
    return JsonResponse({'payments': [payment_to_dict(p) for p in qs]})


@require_GET
@json_login_required
def payment_status(request, payment_id):
    qs = Payment.objects.all() if request.user.is_staff else Payment.objects.filter(student=request.user)
    try:
        payment = qs.get(id=payment_id)
    except Payment.DoesNotExist:
        return JsonResponse({'error': f"Payment {payment_id} not found"}, status=404)
    return JsonResponse(payment_to_dict(payment))


@csrf_exempt
@require_POST
@json_staff_required
async def reconcile_payment(request, payment_id):
    try:
        payment = await Payment.objects.aget(id=payment_id)
    except Payment.DoesNotExist:
        return JsonResponse({'error': f"Payment {payment_id} not found"}, status=404)

    if not payment.checkout_request_id:
        return JsonResponse({'error': 'Cannot query status: missing CheckoutRequestID on this payment.'}, status=400)

    try:
        payment = await PaymentReconciler().reconcile(payment)
    except PaymentError as e:
        return _error(e, 502)
    return JsonResponse(payment_to_dict(payment))
