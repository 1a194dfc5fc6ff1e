"""Errors raised by the payment gateway clients"""

from typing import Optional


class PaymentGatewayError(Exception):
    """A gateway call failed or the gateway is not configured"""

    def __init__(self, message: str, gateway: str, status_code: Optional[int] = None, payload=None):
        super().__init__(message)
        self.message = message
        self.gateway = gateway
        self.status_code = status_code
        self.payload = payload


class GatewayNotConfiguredError(PaymentGatewayError):
    pass
