from django.urls import path
from . import views

urlpatterns = [
    path('rooms/available/', views.available_rooms, name='available_rooms'),
    path('rooms/<int:room_id>/book/', views.book_room, name='book_room'),
    path('mine/', views.my_booking, name='my_booking'),
    path('requests/', views.booking_requests, name='booking_requests'),
    path('requests/<int:request_id>/approve/', views.approve_request, name='approve_booking'),
    path('requests/<int:request_id>/reject/', views.reject_request, name='reject_booking'),
]
