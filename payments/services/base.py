from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

RESULT_SUCCESS = '0'
RESULT_CANCELLED_BY_USER = '1032'


@dataclass
class PaymentRequest:
    amount: Decimal
    phone_number: str
    account_reference: str
    transaction_description: str


@dataclass
class CheckoutSession:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_code: str
    response_description: str = ''
    customer_message: str = ''

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> 'CheckoutSession':
        return cls(
            checkout_request_id=data.get('CheckoutRequestID'),
            merchant_request_id=data.get('MerchantRequestID'),
            response_code=str(data.get('ResponseCode')),
            response_description=data.get('ResponseDescription') or '',
            customer_message=data.get('CustomerMessage') or '',
        )


@dataclass
class TransactionStatus:
    result_code: Optional[str]
    result_desc: str = ''
    mpesa_receipt_number: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> 'TransactionStatus':
        code = data.get('ResultCode')
        if code is None or code == '':
            # No ResultCode yet means the customer has not acted on the prompt.
            return cls(result_code=None, result_desc='Transaction is being processed', raw=data)
        return cls(
            result_code=str(code),
            result_desc=data.get('ResultDesc') or '',
            mpesa_receipt_number=data.get('MpesaReceiptNumber'),
            raw=data,
        )

    @property
    def is_success(self) -> bool:
        return self.result_code == RESULT_SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.result_code == RESULT_CANCELLED_BY_USER

    @property
    def is_processing(self) -> bool:
        return not (self.is_success or self.is_cancelled)


class PaymentGateway(ABC):
    @abstractmethod
    def initiate_charge(self, request: PaymentRequest) -> CheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def query_status(self, checkout_request_id: str) -> TransactionStatus:
        raise NotImplementedError
