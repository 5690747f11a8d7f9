import json
from unittest.mock import patch

import requests
from django.apps import apps
from django.core.exceptions import ImproperlyConfigured
from django.test import TestCase, override_settings
from requests.auth import HTTPBasicAuth

from payments.tests.helpers import make_response

TOKEN_URL = 'https://sandbox.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials'
STATUS_BODY = {
    'BusinessShortCode': '174379',
    'Password': 'MTc0Mzc5YmZiMjc5ZjlhYTliZGJjZjE1OGU5N2RkNzFhNDY3Y2QyZTBjODkzMDU5YjEwZjc4ZTZiNzJhZGExZWQyYzkxOTIwMjQxMDE4MTIwMDAw',
    'Timestamp': '20241018120000',
    'CheckoutRequestID': 'ws_CO_191220191020363925',
}


class ProxyTestCase(TestCase):
    def setUp(self):
        get_patcher = patch('mpesa_proxy.utils.requests.get')
        post_patcher = patch('mpesa_proxy.views.requests.post')
        self.mock_get = get_patcher.start()
        self.mock_post = post_patcher.start()
        self.addCleanup(get_patcher.stop)
        self.addCleanup(post_patcher.stop)
        self.mock_get.return_value = make_response(200, {'access_token': 'daraja-token', 'expires_in': '3599'})

    def post_json(self, url, body):
        return self.client.post(url, json.dumps(body), content_type='application/json')


class TokenEndpointTests(ProxyTestCase):
    def test_returns_access_token(self):
        response = self.client.get('/api/mpesa/token')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'access_token': 'daraja-token'})
        args, kwargs = self.mock_get.call_args
        self.assertEqual(args[0], TOKEN_URL)
        self.assertEqual(kwargs['auth'], HTTPBasicAuth('test-consumer-key', 'test-consumer-secret'))

    def test_oauth_failure_returns_details(self):
        self.mock_get.return_value = make_response(401, {'errorMessage': 'Invalid Authentication passed'})

        response = self.client.get('/api/mpesa/token')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {
            'error': 'Failed to get access token',
            'details': {'errorMessage': 'Invalid Authentication passed'},
        })

    def test_network_failure(self):
        self.mock_get.side_effect = requests.ConnectionError('connection refused')

        response = self.client.get('/api/mpesa/token')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['details'], 'connection refused')


class StkPushEndpointTests(ProxyTestCase):
    body = {
        'BusinessShortCode': '174379',
        'Amount': 8000,
        'PartyA': '254712345678',
        'PhoneNumber': '254712345678',
        'AccountReference': 'Hostel',
    }

    def test_forwards_body_with_fresh_token(self):
        self.mock_post.return_value = make_response(200, {
            'MerchantRequestID': '29115-34620561-1',
            'CheckoutRequestID': 'ws_CO_191220191020363925',
            'ResponseCode': '0',
        })

        first = self.post_json('/api/mpesa/stkpush', self.body)
        self.post_json('/api/mpesa/stkpush', self.body)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['CheckoutRequestID'], 'ws_CO_191220191020363925')
        self.assertEqual(self.mock_get.call_count, 2)
        args, kwargs = self.mock_post.call_args
        self.assertEqual(args[0], 'https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest')
        self.assertEqual(kwargs['json'], self.body)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer daraja-token')

    def test_upstream_error_returns_details(self):
        self.mock_post.return_value = make_response(400, {
            'errorCode': '400.002.02', 'errorMessage': 'Bad Request - Invalid PhoneNumber',
        })

        response = self.post_json('/api/mpesa/stkpush', self.body)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to initiate payment')
        self.assertEqual(response.json()['details']['errorMessage'], 'Bad Request - Invalid PhoneNumber')

    def test_token_failure_skips_upstream_call(self):
        self.mock_get.return_value = make_response(500, text='Service Unavailable')

        response = self.post_json('/api/mpesa/stkpush', self.body)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['details'], 'Service Unavailable')
        self.mock_post.assert_not_called()

    def test_invalid_json(self):
        response = self.client.post('/api/mpesa/stkpush', 'nope', content_type='application/json')
        self.assertEqual(response.status_code, 400)


class StatusEndpointTests(ProxyTestCase):
    def test_missing_field_rejected_without_upstream_call(self):
        body = dict(STATUS_BODY)
        del body['Timestamp']

        response = self.post_json('/api/mpesa/status', body)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'error': 'Missing required fields',
            'details': 'CheckoutRequestID, BusinessShortCode, Password, and Timestamp are required',
        })
        self.mock_get.assert_not_called()
        self.mock_post.assert_not_called()

    def test_null_field_rejected(self):
        response = self.post_json('/api/mpesa/status', dict(STATUS_BODY, Password=None))
        self.assertEqual(response.status_code, 400)

    def test_empty_string_field_is_still_forwarded(self):
        self.mock_post.return_value = make_response(200, {'ResultCode': '0', 'ResultDesc': 'ok'})

        response = self.post_json('/api/mpesa/status', dict(STATUS_BODY, Timestamp=''))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.mock_post.call_args.kwargs['json']['Timestamp'], '')

    def test_missing_result_code_is_reported_as_processing(self):
        self.mock_post.return_value = make_response(200, {
            'ResponseCode': '0',
            'ResponseDescription': 'The service request has been accepted successsfully',
            'MerchantRequestID': '29115-34620561-1',
            'CheckoutRequestID': 'ws_CO_191220191020363925',
            'ResultDesc': '',
        })

        response = self.post_json('/api/mpesa/status', STATUS_BODY)

        data = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['ResultCode'], '1')
        self.assertEqual(data['ResultDesc'], 'Transaction is being processed')
        self.assertEqual(data['CheckoutRequestID'], 'ws_CO_191220191020363925')
        self.assertEqual(data['MerchantRequestID'], '29115-34620561-1')

    def test_result_code_passed_through(self):
        upstream = {
            'ResponseCode': '0',
            'CheckoutRequestID': 'ws_CO_191220191020363925',
            'ResultCode': '1032',
            'ResultDesc': 'Request cancelled by user',
        }
        self.mock_post.return_value = make_response(200, upstream)

        response = self.post_json('/api/mpesa/status', STATUS_BODY)

        self.assertEqual(response.json(), upstream)
        args, _ = self.mock_post.call_args
        self.assertEqual(args[0], 'https://sandbox.safaricom.co.ke/mpesa/stkpushquery/v1/query')

    def test_upstream_error(self):
        self.mock_post.return_value = make_response(500, {'errorCode': '500.001.1001', 'errorMessage': 'Server busy'})

        response = self.post_json('/api/mpesa/status', STATUS_BODY)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to check transaction status')


class ProxyConfigTests(TestCase):
    def test_missing_credentials_refuse_startup(self):
        app_config = apps.get_app_config('mpesa_proxy')
        with override_settings(MPESA_CONSUMER_KEY='', MPESA_CONSUMER_SECRET=''):
            with self.assertRaises(ImproperlyConfigured) as ctx:
                app_config.ready()
        self.assertIn('MPESA_CONSUMER_KEY', str(ctx.exception))
        self.assertIn('MPESA_CONSUMER_SECRET', str(ctx.exception))

    def test_repr_masks_secrets(self):
        config = apps.get_app_config('mpesa_proxy').config
        self.assertNotIn('test-consumer-secret', repr(config))
        self.assertEqual(config.consumer_key, 'test-consumer-key')
