"""Asaas service - customers, subscriptions, charges and transfers over the REST API"""

import json
import logging
from datetime import date, timedelta
from typing import Optional

import httpx
from dateutil.parser import isoparse

from ...config import ASAAS_API_KEY, ASAAS_ENVIRONMENT
from .exceptions import GatewayNotConfiguredError, PaymentGatewayError

logger = logging.getLogger(__name__)

ASAAS_PRODUCTION_URL = "https://api.asaas.com/v3"
ASAAS_SANDBOX_URL = "https://sandbox.asaas.com/api/v3"

CYCLES = {"monthly": "MONTHLY", "yearly": "YEARLY"}


def get_asaas_base_url(environment: Optional[str]) -> str:
    return ASAAS_PRODUCTION_URL if (environment or "").lower() == "production" else ASAAS_SANDBOX_URL


def cents_to_value(cents: int) -> float:
    """Asaas amounts are reais with two decimals"""
    return round(cents / 100, 2)


def build_external_reference(**fields) -> str:
    return json.dumps(fields, separators=(",", ":"), default=str)


def parse_external_reference(value: Optional[str]) -> dict:
    """Decode the JSON reference stored on subscriptions and charges; plain strings become a user id"""
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return {"user_id": value}
    return parsed if isinstance(parsed, dict) else {"user_id": value}


ASAAS_PAID_STATUSES = {"RECEIVED", "CONFIRMED", "RECEIVED_IN_CASH"}
ASAAS_OPEN_STATUSES = {"PENDING", "OVERDUE"}


def _parse_date(value: Optional[str]):
    return isoparse(value) if value else None


def summarize_payment(payment: dict) -> dict:
    """Map an Asaas charge onto the invoice shape used by the billing history"""
    raw_status = payment.get("status")
    if raw_status in ASAAS_PAID_STATUSES:
        status = "paid"
    elif raw_status in ASAAS_OPEN_STATUSES:
        status = "open"
    else:
        status = (raw_status or "").lower() or None
    amount = int(round(float(payment.get("value") or 0) * 100))
    return {
        "id": payment.get("id"),
        "number": payment.get("invoiceNumber"),
        "status": status,
        "amount_paid": amount if status == "paid" else 0,
        "amount_due": amount if status == "open" else 0,
        "total": amount,
        "created": _parse_date(payment.get("dateCreated")),
        "due_date": _parse_date(payment.get("dueDate")),
        "period_start": None,
        "period_end": None,
        "invoice_url": payment.get("invoiceUrl") or payment.get("bankSlipUrl"),
        "invoice_pdf": payment.get("bankSlipUrl"),
        "billing_reason": "subscription_cycle",
        "description": payment.get("description"),
    }


class AsaasService:
    """Service for Asaas API operations"""

    def __init__(self, api_key: Optional[str] = None, environment: Optional[str] = None):
        self.api_key = api_key if api_key is not None else ASAAS_API_KEY
        self.environment = environment or ASAAS_ENVIRONMENT
        self.base_url = get_asaas_base_url(self.environment)

        if not self.api_key:
            logger.warning("ASAAS_API_KEY not set; Asaas billing endpoints will fail until configured")
        else:
            logger.info(f"Asaas client configured (env={self.environment})")

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _request(
        self, method: str, path: str, payload: Optional[dict] = None, params: Optional[dict] = None
    ) -> dict:
        if not self.api_key:
            raise GatewayNotConfiguredError("Gateway de pagamento Asaas não configurado.", gateway="asaas")

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=30.0) as client:
                response = await client.request(
                    method,
                    path,
                    json=payload,
                    params=params,
                    headers={"access_token": self.api_key, "Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Asaas {method} {path} connection error: {e}")
            raise PaymentGatewayError("Erro de conexão com gateway", gateway="asaas") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        errors = body.get("errors") if isinstance(body, dict) else None
        if response.status_code >= 400 or errors:
            first_error = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else {}
            description = first_error.get("description") or f"Erro no gateway ({response.status_code})"
            logger.error(f"❌ Asaas {method} {path} failed: {response.status_code} {errors}")
            raise PaymentGatewayError(
                description, gateway="asaas", status_code=response.status_code, payload=body
            )

        return body

    async def find_or_create_customer(
        self, email: str, name: Optional[str], cpf_cnpj: Optional[str], external_reference: str
    ) -> str:
        """Look a customer up by email, creating one when none exists"""
        found = await self._request("GET", "/customers", params={"email": email})
        if found.get("data"):
            customer_id = found["data"][0]["id"]
            logger.info(f"👤 Existing Asaas customer: {customer_id}")
            return customer_id

        created = await self._request(
            "POST",
            "/customers",
            {
                "name": name or email,
                "email": email,
                "cpfCnpj": cpf_cnpj or None,
                "externalReference": external_reference,
            },
        )
        logger.info(f"👤 Asaas customer created: {created['id']}")
        return created["id"]

    async def create_subscription(
        self,
        customer_id: str,
        amount: int,
        interval: str,
        description: str,
        external_reference: str,
        discount: int = 0,
        next_due_date: Optional[date] = None,
    ) -> dict:
        """Create a subscription billed from tomorrow; the customer picks PIX, card or boleto"""
        payload = {
            "customer": customer_id,
            "billingType": "UNDEFINED",
            "value": cents_to_value(amount),
            "nextDueDate": (next_due_date or date.today() + timedelta(days=1)).isoformat(),
            "cycle": CYCLES[interval],
            "description": description,
            "externalReference": external_reference,
        }
        if discount:
            payload["discount"] = {"value": cents_to_value(discount), "dueDateLimitDays": 0, "type": "FIXED"}

        subscription = await self._request("POST", "/subscriptions", payload)
        logger.info(f"✅ Asaas subscription created: {subscription['id']}")
        return subscription

    async def get_subscription_payment_url(self, subscription_id: str) -> Optional[str]:
        """Invoice URL of the first charge generated for a subscription"""
        payments = await self._request("GET", f"/subscriptions/{subscription_id}/payments")
        data = payments.get("data") or []
        if not data:
            return None
        first = data[0]
        if first.get("invoiceUrl") or first.get("bankSlipUrl"):
            return first.get("invoiceUrl") or first.get("bankSlipUrl")
        checkout_base = "https://www.asaas.com/c" if self.environment == "production" else "https://sandbox.asaas.com/c"
        return f"{checkout_base}/{first['id']}"

    async def list_subscription_payments(self, subscription_id: str) -> list:
        payments = await self._request("GET", f"/subscriptions/{subscription_id}/payments", params={"limit": 100})
        return [summarize_payment(payment) for payment in (payments.get("data") or [])]

    async def update_subscription(self, subscription_id: str, amount: int, interval: str, description: str) -> dict:
        return await self._request(
            "POST",
            f"/subscriptions/{subscription_id}",
            {
                "value": cents_to_value(amount),
                "cycle": CYCLES[interval],
                "description": description,
                "updatePendingPayments": True,
            },
        )

    async def cancel_subscription(self, subscription_id: str) -> dict:
        result = await self._request("DELETE", f"/subscriptions/{subscription_id}")
        logger.info(f"🛑 Asaas subscription {subscription_id} deleted")
        return result

    async def create_charge(
        self, customer_id: str, amount: int, description: str, external_reference: str, due_in_days: int = 1
    ) -> dict:
        """One-off charge (used for upgrade differences)"""
        return await self._request(
            "POST",
            "/payments",
            {
                "customer": customer_id,
                "billingType": "UNDEFINED",
                "value": cents_to_value(amount),
                "dueDate": (date.today() + timedelta(days=due_in_days)).isoformat(),
                "description": description,
                "externalReference": external_reference,
            },
        )

    async def create_transfer(self, payload: dict) -> dict:
        """POST /transfers with a PIX or TED payload"""
        result = await self._request("POST", "/transfers", payload)
        logger.info(f"💸 Asaas transfer created: {result.get('id')}")
        return result


asaas_service = AsaasService()
