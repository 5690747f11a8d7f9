from django.contrib import admin
from django.urls import include, path

from . import views

urlpatterns = [
    path('', views.index, name='index'),
    path('admin/', admin.site.urls),
    path('api/mpesa/', include('mpesa_proxy.urls')),
    path('bookings/', include('bookings.urls')),
    path('payments/', include('payments.urls')),
]
