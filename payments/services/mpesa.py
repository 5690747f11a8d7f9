import base64
import datetime as dt
import logging
import re
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings

from ..exceptions import ChargeRejected, GatewayUnavailable, InvalidAmount, InvalidPhoneNumber
from .base import CheckoutSession, PaymentGateway, PaymentRequest, TransactionStatus

logger = logging.getLogger(__name__)

MSISDN_PATTERN = re.compile(r'^254\d{9}$')
# Daraja field limits for STK push
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13


def normalize_phone_number(phone):
    """Return ``phone`` as a 254XXXXXXXXX MSISDN or raise InvalidPhoneNumber."""
    if not isinstance(phone, str):
        raise InvalidPhoneNumber()
    digits = re.sub(r'\D', '', phone)
    if digits.startswith('0'):
        digits = f"254{digits[1:]}"
    elif not digits.startswith('254'):
        digits = f"254{digits}"
    if not MSISDN_PATTERN.match(digits):
        raise InvalidPhoneNumber()
    return digits


def _clean(text, limit):
    return re.sub(r'[^\w\s-]', '', text or '')[:limit].strip()


class MpesaGatewayClient(PaymentGateway):
    """
    Signs STK push requests and sends them through the M-Pesa proxy.

    The client keeps no state between calls: the password depends on the
    timestamp, so every charge and every status query is signed afresh, and
    all correlation is done by the caller through the checkout request id.
    """

    def __init__(self, proxy_url, shortcode, passkey, callback_url, timeout=30):
        self.proxy_url = proxy_url.rstrip('/')
        self.shortcode = str(shortcode)
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls):
        return cls(
            proxy_url=settings.MPESA_PROXY_URL,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=settings.MPESA_CALLBACK_URL,
            timeout=settings.MPESA_HTTP_TIMEOUT,
        )

    def _timestamp(self):
        return dt.datetime.now().strftime('%Y%m%d%H%M%S')

    def _password(self, timestamp):
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode('utf-8')
        return base64.b64encode(raw).decode('utf-8')

    def _access_token(self):
        try:
            resp = requests.get(f"{self.proxy_url}/token", timeout=self.timeout)
            resp.raise_for_status()
            token = resp.json().get('access_token')
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to get M-Pesa access token: %s", e)
            raise GatewayUnavailable("Failed to authenticate with M-Pesa") from e
        if not token:
            logger.error("M-Pesa token response had no access_token")
            raise GatewayUnavailable("Failed to authenticate with M-Pesa")
        return token

    def initiate_charge(self, request: PaymentRequest) -> CheckoutSession:
        # Daraja takes whole shillings
        amount = Decimal(str(request.amount)).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise InvalidAmount()
        phone = normalize_phone_number(request.phone_number)

        token = self._access_token()
        timestamp = self._timestamp()
        password = self._password(timestamp)

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": _clean(request.account_reference, ACCOUNT_REFERENCE_MAX),
            "TransactionDesc": _clean(request.transaction_description, TRANSACTION_DESC_MAX),
        }
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        logger.info("Initiating STK push of %s to %s", payload["Amount"], phone)

        try:
            resp = requests.post(f"{self.proxy_url}/stkpush", json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("Failed to reach M-Pesa STK push proxy: %s", e)
            raise GatewayUnavailable("M-Pesa service is currently unreachable. Please try again later.") from e

        try:
            data = resp.json()
        except ValueError:
            logger.error("STK push returned non-JSON body: status=%s, body=%s", resp.status_code, resp.text)
            raise GatewayUnavailable("Invalid response from M-Pesa")

        if resp.ok and str(data.get('ResponseCode')) == '0' and data.get('CheckoutRequestID'):
            session = CheckoutSession.from_response(data)
            logger.info("STK push accepted: %s", session.checkout_request_id)
            return session

        description = self._rejection_description(data)
        logger.warning("STK push rejected: status=%s, body=%s", resp.status_code, data)
        raise ChargeRejected(description, response=data)

    @staticmethod
    def _rejection_description(data):
        if not isinstance(data, dict):
            return None
        details = data.get('details')
        if isinstance(details, dict):
            return details.get('errorMessage') or details.get('ResponseDescription') or data.get('error')
        return (
            data.get('ResponseDescription')
            or data.get('errorMessage')
            or (details if isinstance(details, str) else None)
            or data.get('error')
        )

    def query_status(self, checkout_request_id) -> TransactionStatus:
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        try:
            resp = requests.post(f"{self.proxy_url}/status", json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Error querying transaction status for %s: %s", checkout_request_id, e)
            raise GatewayUnavailable("Failed to query transaction status") from e

        status = TransactionStatus.from_response(data)
        logger.debug("Status for %s: %s %s", checkout_request_id, status.result_code, status.result_desc)
        return status
