import json
from decimal import Decimal

import requests
from django.contrib.auth import get_user_model

from bookings.models import BookingRequest, Room
from payments.services.base import CheckoutSession, PaymentGateway, TransactionStatus

User = get_user_model()


def make_response(status_code=200, payload=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    response.encoding = 'utf-8'
    response.url = 'http://proxy.test/'
    if payload is not None:
        response._content = json.dumps(payload).encode('utf-8')
        response.headers['Content-Type'] = 'application/json'
    else:
        response._content = (text or '').encode('utf-8')
    return response


def processing():
    return TransactionStatus(result_code=None, result_desc='Transaction is being processed')


def succeeded(receipt='QGH7XYZ123'):
    return TransactionStatus(result_code='0', result_desc='The service request is processed successfully.',
                             mpesa_receipt_number=receipt)


def cancelled():
    return TransactionStatus(result_code='1032', result_desc='Request cancelled by user')


class FakeGateway(PaymentGateway):
    """Scripted gateway: hands out ``statuses`` in order, then keeps processing."""

    def __init__(self, statuses=(), reject=None, on_charge=None, checkout_request_id='ws_CO_191220191020363925'):
        self.statuses = list(statuses)
        self.reject = reject
        self.on_charge = on_charge
        self.checkout_request_id = checkout_request_id
        self.charges = []
        self.queries = 0

    def initiate_charge(self, request):
        self.charges.append(request)
        if self.reject is not None:
            raise self.reject
        if self.on_charge is not None:
            self.on_charge()
        return CheckoutSession(
            checkout_request_id=self.checkout_request_id,
            merchant_request_id='29115-34620561-1',
            response_code='0',
            response_description='Success. Request accepted for processing',
            customer_message='Success. Request accepted for processing',
        )

    def query_status(self, checkout_request_id):
        self.queries += 1
        item = self.statuses.pop(0) if self.statuses else processing()
        if isinstance(item, Exception):
            raise item
        return item


def create_student(username='student', **extra):
    return User.objects.create_user(username=username, password='testpass123', **extra)


def create_approved_booking(student, room_number='A101', price=Decimal('8000.00')):
    room = Room.objects.create(room_number=room_number, floor=1, capacity=1, type='single',
                               price_per_month=price, is_occupied=True)
    return BookingRequest.objects.create(student=student, room=room, status=BookingRequest.Status.APPROVED)
