"""
Drives one M-Pesa STK push attempt from initiation to a terminal payment row.

    NotStarted -> Initiating -> AwaitingProviderConfirmation -> Completed | Failed

Nothing is written until M-Pesa accepts the charge. The pending row is then
settled by polling the status endpoint: ``"0"`` completes it, ``"1032"`` fails
it, anything else (including a missing code or a failed query) keeps polling
until the attempt budget runs out, which fails it as a timeout. A caller that
stops waiting sets ``cancel_event``; the row then stays pending and can be
settled later with ``reconcile``.
"""
import asyncio
import logging

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import IntegrityError, transaction

from bookings.services import aget_approved_booking
from ..billing import ROOM_ITEM, total_for
from ..exceptions import (
    DuplicatePayment,
    InvalidAmount,
    NoBillableItemSelected,
    PaymentAbandoned,
    PaymentNotAllowed,
    PaymentTimeout,
    UserCancelled,
)
from ..models import Payment, generate_reference_number
from .base import RESULT_CANCELLED_BY_USER, PaymentRequest
from .mpesa import MpesaGatewayClient, normalize_phone_number

logger = logging.getLogger(__name__)


def _create_pending_payment(**fields):
    # Savepoint so a constraint violation leaves any outer transaction usable.
    with transaction.atomic():
        return Payment.objects.create(status=Payment.Status.PENDING, **fields)


class PaymentReconciler:
    def __init__(self, gateway=None, poll_interval=None, max_attempts=None):
        self.gateway = gateway or MpesaGatewayClient.from_settings()
        self.poll_interval = settings.MPESA_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_attempts = settings.MPESA_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts

    async def pay(self, student, phone_number, month, items, cancel_event=None):
        """Run a whole attempt and return the completed payment.

        Raises the validation and initiation errors from ``initiate`` with no
        row written, ``UserCancelled``/``PaymentTimeout`` after failing the row,
        or ``PaymentAbandoned`` with the row left pending.
        """
        payment = await self.initiate(student, phone_number, month, items)
        return await self.settle(payment, cancel_event=cancel_event)

    async def _validate(self, student, phone_number, month, items):
        if any(not isinstance(code, str) for code in items or []):
            raise NoBillableItemSelected("Payment types must be given by name")
        codes = list(dict.fromkeys(items or []))
        if not codes:
            raise NoBillableItemSelected()
        unknown = [code for code in codes if code not in settings.HOSTEL_BILLABLE_ITEMS]
        if unknown:
            raise NoBillableItemSelected(f"Unknown payment type: {', '.join(unknown)}")

        phone = normalize_phone_number(phone_number)

        room = None
        if ROOM_ITEM in codes:
            booking = await aget_approved_booking(student)
            if booking is None:
                raise PaymentNotAllowed()
            room = booking.room
            if await Payment.objects.non_failed_room(student, month).aexists():
                raise DuplicatePayment()

        amount = total_for(codes, room)
        if amount <= 0:
            raise InvalidAmount()
        return codes, phone, amount

    async def initiate(self, student, phone_number, month, items):
        codes, phone, amount = await self._validate(student, phone_number, month, items)

        request = PaymentRequest(
            amount=amount,
            phone_number=phone,
            account_reference=settings.MPESA_ACCOUNT_REFERENCE,
            transaction_description=settings.MPESA_TRANSACTION_DESC,
        )
        session = await sync_to_async(self.gateway.initiate_charge)(request)

        category = Payment.Category.ROOM if ROOM_ITEM in codes else Payment.Category.SERVICES
        try:
            payment = await sync_to_async(_create_pending_payment)(
                student=student,
                amount=amount,
                category=category,
                payment_method=Payment.Method.MPESA,
                reference_number=generate_reference_number(student.pk, month),
                month=month,
                items=codes,
                checkout_request_id=session.checkout_request_id,
                merchant_request_id=session.merchant_request_id,
            )
        except IntegrityError:
            # The charge is already on the customer's phone; an operator has to match it up.
            logger.error(
                "STK push %s accepted but a room payment for student %s, month %s already exists",
                session.checkout_request_id, student.pk, month,
            )
            raise DuplicatePayment()

        logger.info("Payment %s pending on checkout %s", payment.reference_number, payment.checkout_request_id)
        return payment

    async def _pause(self, cancel_event):
        """Sleep one poll interval. Returns True when cancellation was requested."""
        if cancel_event is None:
            await asyncio.sleep(self.poll_interval)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_for_payment(self, checkout_request_id, cancel_event=None):
        query = sync_to_async(self.gateway.query_status)
        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise PaymentAbandoned()
            try:
                status = await query(checkout_request_id)
            except Exception as e:
                logger.warning(
                    "Error checking payment status (attempt %d/%d): %s", attempt, self.max_attempts, e
                )
            else:
                if status.is_success:
                    return status
                if status.is_cancelled:
                    raise UserCancelled()
                logger.info(
                    "Payment status (attempt %d/%d): %s %s",
                    attempt, self.max_attempts, status.result_code, status.result_desc,
                )

            if attempt < self.max_attempts and await self._pause(cancel_event):
                raise PaymentAbandoned()

        raise PaymentTimeout()

    async def settle(self, payment, cancel_event=None):
        try:
            status = await self.wait_for_payment(payment.checkout_request_id, cancel_event=cancel_event)
        except UserCancelled as e:
            await payment.amark_failed(result_code=RESULT_CANCELLED_BY_USER, result_desc="Request cancelled by user")
            logger.info("Payment %s cancelled by user", payment.reference_number)
            e.payment = payment
            raise
        except PaymentTimeout as e:
            await payment.amark_failed(result_desc="Timed out waiting for M-Pesa confirmation")
            logger.warning("Payment %s timed out after %d status checks", payment.reference_number, self.max_attempts)
            e.payment = payment
            raise
        except PaymentAbandoned as e:
            logger.warning("Stopped polling payment %s; left pending", payment.reference_number)
            e.payment = payment
            raise
        except asyncio.CancelledError:
            logger.warning("Polling task for payment %s cancelled; left pending", payment.reference_number)
            raise

        if not await payment.amark_completed(status.mpesa_receipt_number, status.result_code, status.result_desc):
            logger.warning("Payment %s was already %s; success not applied", payment.reference_number, payment.status)
        else:
            logger.info("Payment %s completed: %s", payment.reference_number, payment.transaction_code)
        return payment

    async def reconcile(self, payment):
        """Query once and settle a pending payment whose poll was abandoned.

        Terminal rows are returned untouched. Query errors propagate.
        """
        if payment.is_terminal or not payment.checkout_request_id:
            return payment

        status = await sync_to_async(self.gateway.query_status)(payment.checkout_request_id)
        if status.is_success:
            await payment.amark_completed(status.mpesa_receipt_number, status.result_code, status.result_desc)
        elif status.is_cancelled:
            await payment.amark_failed(result_code=status.result_code, result_desc=status.result_desc)
        else:
            logger.info("Payment %s still pending: %s", payment.reference_number, status.result_desc)
        return payment
