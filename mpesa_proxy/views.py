"""
Forwarding endpoints between the payment client and Daraja.

Only this app sees the consumer key and secret. It obtains a fresh token for
every forwarded call, passes Daraja's JSON back untouched and makes no
decision about whether a payment succeeded.
"""
import json
import logging

import requests
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .utils import UpstreamError, get_access_token, get_config, response_body

logger = logging.getLogger(__name__)

STATUS_REQUIRED_FIELDS = ('CheckoutRequestID', 'BusinessShortCode', 'Password', 'Timestamp')


def _error_details(error):
    if isinstance(error, UpstreamError):
        return error.details
    response = getattr(error, 'response', None)
    if response is not None:
        return response_body(response)
    return str(error)


def _log_upstream_error(label, error):
    response = getattr(error, 'response', None)
    logger.error(
        "%s error: status=%s, data=%s, error=%s",
        label,
        getattr(error, 'status', None) or getattr(response, 'status_code', None),
        _error_details(error),
        error,
    )


def _json_body(request):
    try:
        data = json.loads(request.body.decode('utf-8') or '{}')
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _forward(path, payload):
    config = get_config()
    token = get_access_token(config)
    response = requests.post(
        f"{config.base_url}{path}",
        json=payload,
        headers={
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        },
        timeout=config.timeout,
    )
    response.raise_for_status()
    return response.json()


@require_GET
def token(request):
    try:
        access_token = get_access_token()
    except (UpstreamError, requests.RequestException) as e:
        _log_upstream_error('Token endpoint', e)
        return JsonResponse({'error': 'Failed to get access token', 'details': _error_details(e)}, status=500)
    return JsonResponse({'access_token': access_token})


@csrf_exempt
@require_POST
def stkpush(request):
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    logger.info("STK push request for %s, amount %s", payload.get('PhoneNumber'), payload.get('Amount'))
    try:
        data = _forward('/mpesa/stkpush/v1/processrequest', payload)
    except (UpstreamError, requests.RequestException, ValueError) as e:
        _log_upstream_error('STK push', e)
        return JsonResponse({'error': 'Failed to initiate payment', 'details': _error_details(e)}, status=500)

    logger.info("STK push response: %s", data)
    return JsonResponse(data, safe=False)


@csrf_exempt
@require_POST
def status(request):
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    # Presence check only: an empty string is still a supplied field.
    if any(payload.get(field) is None for field in STATUS_REQUIRED_FIELDS):
        logger.error("Missing required fields in status check request: %s", sorted(payload))
        return JsonResponse({
            'error': 'Missing required fields',
            'details': 'CheckoutRequestID, BusinessShortCode, Password, and Timestamp are required',
        }, status=400)

    logger.info("Status check for %s", payload['CheckoutRequestID'])
    try:
        data = _forward('/mpesa/stkpushquery/v1/query', payload)
    except (UpstreamError, requests.RequestException, ValueError) as e:
        _log_upstream_error('Status check', e)
        return JsonResponse({'error': 'Failed to check transaction status', 'details': _error_details(e)}, status=500)

    logger.info("Status check response: %s", data)

    # If we get a response but no ResultCode, treat it as pending
    if isinstance(data, dict) and data.get('ResultCode') in (None, ''):
        return JsonResponse({
            'ResultCode': '1',
            'ResultDesc': 'Transaction is being processed',
            **{key: value for key, value in data.items() if value not in (None, '')},
        })

    return JsonResponse(data, safe=False)
