import requests
from django.apps import apps
from requests.auth import HTTPBasicAuth


class UpstreamError(Exception):
    """M-Pesa answered with an error; ``details`` holds its body for diagnostics."""

    def __init__(self, message, status=None, details=None):
        super().__init__(message)
        self.status = status
        self.details = details


def get_config():
    return apps.get_app_config('mpesa_proxy').config


def response_body(response):
    try:
        return response.json()
    except ValueError:
        return response.text


def get_access_token(config=None):
    config = config or get_config()
    url = f"{config.base_url}/oauth/v1/generate?grant_type=client_credentials"
    response = requests.get(
        url,
        auth=HTTPBasicAuth(config.consumer_key, config.consumer_secret),
        headers={"Accept": "application/json"},
        timeout=config.timeout,
    )
    # Ensure we have a successful response and valid JSON
    if response.status_code != 200:
        raise UpstreamError(
            f"MPESA OAuth error: status={response.status_code}",
            status=response.status_code,
            details=response_body(response),
        )
    try:
        data = response.json()
    except ValueError:
        raise UpstreamError(
            f"MPESA OAuth returned non-JSON body: status={response.status_code}",
            status=response.status_code,
            details=response.text,
        )
    if "access_token" not in data:
        raise UpstreamError("MPESA OAuth JSON missing access_token", status=response.status_code, details=data)
    return data["access_token"]
