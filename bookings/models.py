from django.conf import settings
from django.db import models


class Room(models.Model):
    room_number = models.CharField(max_length=20, unique=True)
    floor = models.PositiveIntegerField(default=0)
    capacity = models.PositiveIntegerField(default=1)
    type = models.CharField(max_length=50, blank=True)
    price_per_month = models.DecimalField(max_digits=10, decimal_places=2)
    is_occupied = models.BooleanField(default=False)

    class Meta:
        ordering = ['room_number']

    def __str__(self):
        return f"Room {self.room_number}"


class BookingRequest(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='booking_requests')
    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name='booking_requests')
    request_date = models.DateTimeField(auto_now_add=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-request_date']

    def __str__(self):
        return f"{self.student} - {self.room} - {self.status}"


class RoomAllocation(models.Model):
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='room_allocations')
    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name='allocations')
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"{self.student} in {self.room}"
