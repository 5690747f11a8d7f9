import asyncio
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase

from payments.exceptions import (
    ChargeRejected,
    DuplicatePayment,
    GatewayUnavailable,
    InvalidPhoneNumber,
    NoBillableItemSelected,
    PaymentAbandoned,
    PaymentNotAllowed,
    PaymentTimeout,
    UserCancelled,
)
from payments.models import Payment
from payments.services.base import TransactionStatus
from payments.services.reconciliation import PaymentReconciler
from .helpers import (
    FakeGateway,
    cancelled,
    create_approved_booking,
    create_student,
    processing,
    succeeded,
)

PHONE = '0712345678'
MONTH = '2024-10'

User = get_user_model()


class PaymentReconcilerTests(TestCase):
    def setUp(self):
        self.student = create_student()
        self.booking = create_approved_booking(self.student)

    def reconciler(self, gateway, max_attempts=30, poll_interval=0):
        return PaymentReconciler(gateway=gateway, poll_interval=poll_interval, max_attempts=max_attempts)

    async def test_success_on_third_query_completes_payment(self):
        gateway = FakeGateway(statuses=[processing(), processing(), succeeded('QGH7XYZ123')])

        payment = await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 3)
        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertEqual(payment.transaction_code, 'QGH7XYZ123')
        self.assertEqual(payment.amount, Decimal('8000.00'))
        self.assertEqual(payment.category, Payment.Category.ROOM)
        self.assertEqual(payment.checkout_request_id, 'ws_CO_191220191020363925')
        stored = await Payment.objects.aget(pk=payment.pk)
        self.assertEqual(stored.status, Payment.Status.COMPLETED)

    async def test_charge_request_is_normalized_and_totalled(self):
        gateway = FakeGateway(statuses=[succeeded()])

        await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room', 'wifi', 'water'])

        request = gateway.charges[0]
        self.assertEqual(request.phone_number, '254712345678')
        self.assertEqual(request.amount, Decimal('9300.00'))

    async def test_missing_receipt_falls_back_to_reference_number(self):
        gateway = FakeGateway(statuses=[succeeded(receipt=None)])

        payment = await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(payment.transaction_code, payment.reference_number)
        self.assertTrue(payment.reference_number.startswith('PAY-'))
        self.assertIn('202410', payment.reference_number)

    async def test_user_cancellation_fails_payment_without_further_polling(self):
        gateway = FakeGateway(statuses=[cancelled(), succeeded()])

        with self.assertRaises(UserCancelled) as ctx:
            await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 1)
        payment = await Payment.objects.aget(student=self.student)
        self.assertEqual(payment.status, Payment.Status.FAILED)
        self.assertIsNone(payment.transaction_code)
        self.assertEqual(payment.result_code, '1032')
        self.assertEqual(ctx.exception.payment.pk, payment.pk)
        self.assertEqual(ctx.exception.message, 'Payment cancelled.')

    async def test_timeout_after_exact_attempt_budget(self):
        gateway = FakeGateway()

        with self.assertRaises(PaymentTimeout) as ctx:
            await self.reconciler(gateway, max_attempts=4).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 4)
        self.assertIn('check your M-Pesa messages', ctx.exception.message)
        payment = await Payment.objects.aget(student=self.student)
        self.assertEqual(payment.status, Payment.Status.FAILED)
        self.assertIsNone(payment.transaction_code)

    async def test_query_errors_are_retried(self):
        gateway = FakeGateway(statuses=[
            GatewayUnavailable("Failed to query transaction status"),
            RuntimeError('boom'),
            succeeded('QGH7XYZ999'),
        ])

        payment = await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 3)
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    async def test_query_errors_for_whole_budget_become_timeout(self):
        gateway = FakeGateway(statuses=[GatewayUnavailable()] * 3)

        with self.assertRaises(PaymentTimeout):
            await self.reconciler(gateway, max_attempts=3).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 3)

    async def test_other_result_codes_keep_polling(self):
        gateway = FakeGateway(statuses=[
            TransactionStatus(result_code='1', result_desc='The balance is insufficient for the transaction'),
            TransactionStatus(result_code='2001', result_desc='The initiator information is invalid.'),
            succeeded(),
        ])

        payment = await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.queries, 3)
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    async def test_rejected_initiation_creates_no_record(self):
        gateway = FakeGateway(reject=ChargeRejected('Mock rejection', response={'ResponseCode': '1'}))

        with self.assertRaises(ChargeRejected) as ctx:
            await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(ctx.exception.description, 'Mock rejection')
        self.assertFalse(await Payment.objects.aexists())
        self.assertEqual(gateway.queries, 0)

    async def test_duplicate_room_payment_refused_before_charging(self):
        await Payment.objects.acreate(
            student=self.student, amount=Decimal('8000'), month=MONTH,
            reference_number='PAY-EXIST-1', status=Payment.Status.PENDING,
        )
        gateway = FakeGateway()

        with self.assertRaises(DuplicatePayment):
            await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(gateway.charges, [])

    async def test_failed_payment_does_not_block_new_attempt(self):
        await Payment.objects.acreate(
            student=self.student, amount=Decimal('8000'), month=MONTH,
            reference_number='PAY-OLD-1', status=Payment.Status.FAILED,
        )
        gateway = FakeGateway(statuses=[succeeded()])

        payment = await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertNotEqual(payment.reference_number, 'PAY-OLD-1')

    async def test_concurrent_attempt_caught_by_constraint(self):
        def competing_attempt():
            Payment.objects.create(
                student=self.student, amount=Decimal('8000'), month=MONTH,
                reference_number='PAY-RACE-1', status=Payment.Status.PENDING,
            )

        gateway = FakeGateway(on_charge=competing_attempt)

        with self.assertRaises(DuplicatePayment):
            await self.reconciler(gateway).pay(self.student, PHONE, MONTH, ['room'])

        self.assertEqual(await Payment.objects.filter(student=self.student).acount(), 1)
        self.assertEqual(gateway.queries, 0)

    async def test_room_payment_requires_approved_booking(self):
        other = await User.objects.acreate(username='nobooking')
        gateway = FakeGateway()

        with self.assertRaises(PaymentNotAllowed):
            await self.reconciler(gateway).pay(other, PHONE, MONTH, ['room'])
        self.assertEqual(gateway.charges, [])

    async def test_services_only_payment_needs_no_booking(self):
        other = await User.objects.acreate(username='services')
        gateway = FakeGateway(statuses=[succeeded()])

        payment = await self.reconciler(gateway).pay(other, PHONE, MONTH, ['wifi', 'gym'])

        self.assertEqual(payment.category, Payment.Category.SERVICES)
        self.assertEqual(payment.amount, Decimal('1800'))
        self.assertEqual(payment.items, ['wifi', 'gym'])

    async def test_validation_failures_create_nothing(self):
        gateway = FakeGateway()
        reconciler = self.reconciler(gateway)

        with self.assertRaises(NoBillableItemSelected):
            await reconciler.pay(self.student, PHONE, MONTH, [])
        with self.assertRaises(NoBillableItemSelected):
            await reconciler.pay(self.student, PHONE, MONTH, ['jacuzzi'])
        with self.assertRaises(InvalidPhoneNumber):
            await reconciler.pay(self.student, '12345', MONTH, ['room'])

        self.assertEqual(gateway.charges, [])
        self.assertFalse(await Payment.objects.aexists())

    async def test_cancel_event_set_mid_poll_leaves_payment_pending(self):
        gateway = FakeGateway()
        reconciler = self.reconciler(gateway, poll_interval=10)
        payment = await reconciler.initiate(self.student, PHONE, MONTH, ['room'])
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

        with self.assertRaises(PaymentAbandoned) as ctx:
            await reconciler.settle(payment, cancel_event=cancel_event)

        self.assertEqual(gateway.queries, 1)
        payment = await Payment.objects.aget(student=self.student)
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertEqual(ctx.exception.payment.pk, payment.pk)

    async def test_cancel_event_already_set_stops_before_querying(self):
        gateway = FakeGateway()
        reconciler = self.reconciler(gateway)
        payment = await reconciler.initiate(self.student, PHONE, MONTH, ['room'])
        cancel_event = asyncio.Event()
        cancel_event.set()

        with self.assertRaises(PaymentAbandoned):
            await reconciler.settle(payment, cancel_event=cancel_event)

        self.assertEqual(gateway.queries, 0)
        await payment.arefresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)


class ReconcileTests(TestCase):
    def setUp(self):
        self.student = create_student()
        self.payment = Payment.objects.create(
            student=self.student, amount=Decimal('8000'), month=MONTH,
            reference_number='PAY-STUD-202410-AAAA', status=Payment.Status.PENDING,
            checkout_request_id='ws_CO_1',
        )

    async def test_success_completes_pending_payment(self):
        gateway = FakeGateway(statuses=[succeeded('QGH7XYZ555')])

        payment = await PaymentReconciler(gateway=gateway).reconcile(self.payment)

        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertEqual(payment.transaction_code, 'QGH7XYZ555')

    async def test_cancellation_fails_pending_payment(self):
        gateway = FakeGateway(statuses=[cancelled()])

        payment = await PaymentReconciler(gateway=gateway).reconcile(self.payment)

        self.assertEqual(payment.status, Payment.Status.FAILED)

    async def test_processing_leaves_payment_pending(self):
        gateway = FakeGateway(statuses=[processing()])

        payment = await PaymentReconciler(gateway=gateway).reconcile(self.payment)

        self.assertEqual(gateway.queries, 1)
        self.assertEqual(payment.status, Payment.Status.PENDING)

    async def test_terminal_payment_is_not_queried(self):
        await self.payment.amark_failed()
        gateway = FakeGateway(statuses=[succeeded()])

        payment = await PaymentReconciler(gateway=gateway).reconcile(self.payment)

        self.assertEqual(gateway.queries, 0)
        self.assertEqual(payment.status, Payment.Status.FAILED)

    async def test_query_error_propagates(self):
        gateway = FakeGateway(statuses=[GatewayUnavailable("Failed to query transaction status")])

        with self.assertRaises(GatewayUnavailable):
            await PaymentReconciler(gateway=gateway).reconcile(self.payment)
