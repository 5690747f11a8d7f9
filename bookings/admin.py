from django.contrib import admin
from .models import BookingRequest, Room, RoomAllocation

@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ('room_number', 'floor', 'type', 'capacity', 'price_per_month', 'is_occupied')
    list_filter = ('is_occupied', 'type')
    search_fields = ('room_number',)

@admin.register(BookingRequest)
class BookingRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'student', 'room', 'status', 'request_date')
    list_filter = ('status',)
    search_fields = ('student__username', 'room__room_number')

@admin.register(RoomAllocation)
class RoomAllocationAdmin(admin.ModelAdmin):
    list_display = ('student', 'room', 'start_date', 'end_date')
