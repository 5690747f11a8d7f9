"""
Booking workflow: students request a room, administrators approve or reject.

An approved request is what entitles a student to pay room rent. The payment
engine loads it with ``aget_approved_booking`` before charging a room line item,
since it also needs the room price.
"""
import logging

from django.db import transaction
from django.utils import timezone

from .exceptions import BookingError, BookingStateError, RoomUnavailable
from .models import BookingRequest, Room, RoomAllocation

logger = logging.getLogger(__name__)


def available_rooms():
    return Room.objects.filter(is_occupied=False).order_by('room_number')


def request_booking(student, room):
    if room.is_occupied:
        raise RoomUnavailable(f"Room {room.room_number} is already occupied")

    open_request = BookingRequest.objects.filter(
        student=student,
        status__in=[BookingRequest.Status.PENDING, BookingRequest.Status.APPROVED],
    ).first()
    if open_request:
        raise BookingError(f"You already have a {open_request.status} booking request")

    booking = BookingRequest.objects.create(student=student, room=room, status=BookingRequest.Status.PENDING)
    logger.info("Booking request %s created for student %s, room %s", booking.pk, student.pk, room.room_number)
    return booking


def _pending_request(request_id):
    try:
        booking = BookingRequest.objects.select_for_update().select_related('room').get(pk=request_id)
    except BookingRequest.DoesNotExist:
        raise BookingError(f"Booking request {request_id} not found")
    if booking.status != BookingRequest.Status.PENDING:
        raise BookingStateError(f"Booking request {request_id} is already {booking.status}")
    return booking


@transaction.atomic
def approve_booking(request_id):
    """Approve a pending request, allocate the room and mark it occupied."""
    booking = _pending_request(request_id)
    booking.status = BookingRequest.Status.APPROVED
    booking.save(update_fields=['status', 'updated_at'])

    RoomAllocation.objects.create(student=booking.student, room=booking.room, start_date=timezone.now())
    Room.objects.filter(pk=booking.room_id).update(is_occupied=True)

    logger.info("Booking request %s approved; room %s allocated", booking.pk, booking.room.room_number)
    return booking


@transaction.atomic
def reject_booking(request_id):
    booking = _pending_request(request_id)
    booking.status = BookingRequest.Status.REJECTED
    booking.save(update_fields=['status', 'updated_at'])
    logger.info("Booking request %s rejected", booking.pk)
    return booking


def _approved(student):
    return (
        BookingRequest.objects.select_related('room')
        .filter(student=student, status=BookingRequest.Status.APPROVED)
        .order_by('-request_date')
    )


def get_approved_booking(student):
    return _approved(student).first()


async def aget_approved_booking(student):
    return await _approved(student).afirst()


def has_pending_booking(student):
    return BookingRequest.objects.filter(student=student, status=BookingRequest.Status.PENDING).exists()


def is_eligible_for_room_payment(student):
    return get_approved_booking(student) is not None

