from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase

from . import services
from .exceptions import BookingError, BookingStateError, RoomUnavailable
from .models import BookingRequest, Room, RoomAllocation

User = get_user_model()


class BookingServiceTests(TestCase):
    def setUp(self):
        self.student = User.objects.create_user(username='student', password='testpass123')
        self.room = Room.objects.create(room_number='B201', floor=2, capacity=2, type='double',
                                        price_per_month=Decimal('6500.00'))

    def test_request_creates_pending_booking(self):
        booking = services.request_booking(self.student, self.room)

        self.assertEqual(booking.status, BookingRequest.Status.PENDING)
        self.assertTrue(services.has_pending_booking(self.student))
        self.assertFalse(services.is_eligible_for_room_payment(self.student))

    def test_occupied_room_cannot_be_requested(self):
        self.room.is_occupied = True
        self.room.save()

        with self.assertRaises(RoomUnavailable):
            services.request_booking(self.student, self.room)

    def test_one_open_request_per_student(self):
        services.request_booking(self.student, self.room)
        other_room = Room.objects.create(room_number='B202', floor=2, capacity=1, type='single',
                                         price_per_month=Decimal('8000.00'))

        with self.assertRaises(BookingError):
            services.request_booking(self.student, other_room)

    def test_approval_allocates_room(self):
        booking = services.request_booking(self.student, self.room)

        services.approve_booking(booking.pk)

        self.room.refresh_from_db()
        self.assertTrue(self.room.is_occupied)
        allocation = RoomAllocation.objects.get(student=self.student)
        self.assertEqual(allocation.room, self.room)
        self.assertIsNone(allocation.end_date)
        self.assertTrue(services.is_eligible_for_room_payment(self.student))
        self.assertEqual(services.get_approved_booking(self.student).room, self.room)
        self.assertNotIn(self.room, services.available_rooms())

    def test_only_pending_requests_can_be_decided(self):
        booking = services.request_booking(self.student, self.room)
        services.approve_booking(booking.pk)

        with self.assertRaises(BookingStateError):
            services.approve_booking(booking.pk)
        with self.assertRaises(BookingStateError):
            services.reject_booking(booking.pk)
        self.assertEqual(RoomAllocation.objects.count(), 1)

    def test_rejection_leaves_room_free(self):
        booking = services.request_booking(self.student, self.room)

        services.reject_booking(booking.pk)

        self.room.refresh_from_db()
        self.assertFalse(self.room.is_occupied)
        self.assertFalse(services.is_eligible_for_room_payment(self.student))
        # a rejected request does not block a new one
        services.request_booking(self.student, self.room)

    def test_unknown_request(self):
        with self.assertRaises(BookingError):
            services.approve_booking(9999)

    async def test_async_approved_booking_loads_room(self):
        booking = await BookingRequest.objects.acreate(
            student=self.student, room=self.room, status=BookingRequest.Status.APPROVED,
        )
        approved = await services.aget_approved_booking(self.student)
        self.assertEqual(approved.pk, booking.pk)
        self.assertEqual(approved.room.room_number, 'B201')


class BookingViewTests(TestCase):
    def setUp(self):
        self.student = User.objects.create_user(username='student', password='testpass123')
        self.admin = User.objects.create_user(username='warden', password='testpass123', is_staff=True)
        self.room = Room.objects.create(room_number='C301', floor=3, capacity=1, type='single',
                                        price_per_month=Decimal('9000.00'))

    def test_student_books_room(self):
        self.client.force_login(self.student)

        response = self.client.post(f'/bookings/rooms/{self.room.id}/book/')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['status'], 'pending')
        mine = self.client.get('/bookings/mine/').json()
        self.assertIsNone(mine['allocation'])
        self.assertTrue(mine['has_pending_booking'])

    def test_available_rooms_requires_login(self):
        self.assertEqual(self.client.get('/bookings/rooms/available/').status_code, 401)

    def test_staff_approves_request(self):
        booking = services.request_booking(self.student, self.room)
        self.client.force_login(self.admin)

        response = self.client.post(f'/bookings/requests/{booking.id}/approve/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'approved')
        again = self.client.post(f'/bookings/requests/{booking.id}/approve/')
        self.assertEqual(again.status_code, 409)

    def test_student_cannot_approve(self):
        booking = services.request_booking(self.student, self.room)
        self.client.force_login(self.student)

        response = self.client.post(f'/bookings/requests/{booking.id}/approve/')

        self.assertEqual(response.status_code, 403)
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingRequest.Status.PENDING)

    def test_requests_filtered_by_status(self):
        services.request_booking(self.student, self.room)
        self.client.force_login(self.admin)

        pending = self.client.get('/bookings/requests/', {'status': 'pending'}).json()['requests']
        approved = self.client.get('/bookings/requests/', {'status': 'approved'}).json()['requests']

        self.assertEqual(len(pending), 1)
        self.assertEqual(approved, [])

    def test_approving_missing_request(self):
        self.client.force_login(self.admin)
        self.assertEqual(self.client.post('/bookings/requests/404/approve/').status_code, 404)
