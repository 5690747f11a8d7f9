"""
Payment errors.

Every error carries a ``message`` fit to show the student. Validation and
initiation errors are raised before any payment row exists; the poll outcomes
(``UserCancelled``, ``PaymentTimeout``) carry the row they marked failed.
"""


class PaymentError(Exception):
    default_message = "Payment failed. Please try again."

    def __init__(self, message=None, payment=None):
        self.message = message or self.default_message
        self.payment = payment
        super().__init__(self.message)


class InvalidPhoneNumber(PaymentError):
    default_message = "Please enter a valid phone number (e.g., 0712345678 or 254712345678)"


class InvalidAmount(PaymentError):
    default_message = "Payment amount must be greater than zero"


class NoBillableItemSelected(PaymentError):
    default_message = "Please select at least one payment type"


class PaymentNotAllowed(PaymentError):
    default_message = "You need an approved room allocation before paying room rent"


class DuplicatePayment(PaymentError):
    default_message = "Payment for this month has already been made"


class InitiationFailed(PaymentError):
    default_message = "Failed to initiate M-Pesa payment. Please try again."


class ChargeRejected(InitiationFailed):
    """M-Pesa answered the charge request but did not accept it."""

    def __init__(self, description=None, response=None):
        self.description = description or "STK Push was not accepted"
        self.response = response
        super().__init__(self.description)


class GatewayUnavailable(InitiationFailed):
    """The proxy or M-Pesa could not be reached, or answered with garbage."""


class UserCancelled(PaymentError):
    default_message = "Payment cancelled."


class PaymentTimeout(PaymentError):
    default_message = "Payment timeout: Please check your M-Pesa messages for the status."


class PaymentAbandoned(PaymentError):
    default_message = "Stopped waiting for M-Pesa confirmation. The payment is still pending."
