from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from hostel_project.decorators import json_login_required, json_staff_required
from . import services
from .exceptions import BookingError, BookingStateError
from .models import BookingRequest, Room


def room_to_dict(room):
    return {
        'id': room.id,
        'room_number': room.room_number,
        'floor': room.floor,
        'capacity': room.capacity,
        'type': room.type,
        'price_per_month': str(room.price_per_month),
        'is_occupied': room.is_occupied,
    }


def booking_to_dict(booking):
    return {
        'id': booking.id,
        'student_id': booking.student_id,
        'status': booking.status,
        'request_date': booking.request_date.isoformat(),
        'room': room_to_dict(booking.room),
    }


@require_GET
@json_login_required
def available_rooms(request):
    return JsonResponse({'rooms': [room_to_dict(r) for r in services.available_rooms()]})


@csrf_exempt
@require_POST
@json_login_required
def book_room(request, room_id):
    room = get_object_or_404(Room, pk=room_id)
    try:
        booking = services.request_booking(request.user, room)
    except BookingError as e:
        return JsonResponse({'error': str(e)}, status=400)
    return JsonResponse(booking_to_dict(booking), status=201)


@require_GET
@json_login_required
def my_booking(request):
    approved = services.get_approved_booking(request.user)
    return JsonResponse({
        'allocation': booking_to_dict(approved) if approved else None,
        'has_pending_booking': approved is None and services.has_pending_booking(request.user),
    })


@require_GET
@json_staff_required
def booking_requests(request):
    qs = BookingRequest.objects.select_related('room').order_by('-request_date')
    status_filter = request.GET.get('status')
    if status_filter and status_filter != 'all':
        qs = qs.filter(status=status_filter)
    return JsonResponse({'requests': [booking_to_dict(b) for b in qs]})


def _transition(request_id, action):
    try:
        booking = action(request_id)
    except BookingStateError as e:
        return JsonResponse({'error': str(e)}, status=409)
    except BookingError as e:
        return JsonResponse({'error': str(e)}, status=404)
    return JsonResponse(booking_to_dict(booking))


@csrf_exempt
@require_POST
@json_staff_required
def approve_request(request, request_id):
    return _transition(request_id, services.approve_booking)


@csrf_exempt
@require_POST
@json_staff_required
def reject_request(request, request_id):
    return _transition(request_id, services.reject_booking)
