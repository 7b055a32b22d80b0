"""
Card / Wallet Adapter — PayPal Orders v2, two-phase create + capture.

  create_order(user, tier, months) → order id for the resolver-priced amount,
                                     stamped with the user as custom_id
  capture_order(user, order_id)    → owner check → funds captured → reconcile
                                     with the capture id

Nothing reaches the ledger unless the capture completed. Every outbound call
carries an explicit timeout; a timeout is a failed capture.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from config import settings
from errors import GatewayCaptureFailed, InvalidRequest, PermissionDenied, UnresolvableAmount
from schemas import Tier
from services.pricing import resolve_from_amount, to_amount, total_for_subscription
from services.reconciliation import CardCapture, ReconcileResult, ReconciliationService

logger = logging.getLogger(__name__)

MEMBERSHIP_CURRENCY = "USD"
ORDER_DESCRIPTION = "Business directory membership"


@dataclass(frozen=True)
class CreatedOrder:
    order_id: str
    amount: Decimal
    currency: str = MEMBERSHIP_CURRENCY


@dataclass(frozen=True)
class CapturedPayment:
    capture_id: str
    amount: Decimal
    currency: str


class PayPalError(Exception):
    pass


class PayPalClient:
    """Minimal PayPal REST client (OAuth client credentials + Orders v2)."""

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.paypal_api_base).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.timeout = timeout if timeout is not None else settings.PAYPAL_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if not self.client_id or not self.client_secret:
            raise PayPalError("PayPal credentials not configured")
        resp = await client.post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if resp.status_code != 200:
            logger.error("PayPal token request failed: HTTP %s %s", resp.status_code, resp.text[:200])
            raise PayPalError("Failed to get PayPal access token")
        return resp.json()["access_token"]

    async def create_order(
        self, amount: Decimal, custom_id: str | None = None, currency: str = MEMBERSHIP_CURRENCY,
    ) -> dict:
        purchase_unit = {
            "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
            "description": ORDER_DESCRIPTION,
        }
        if custom_id:
            purchase_unit["custom_id"] = custom_id
        async with self._client() as client:
            token = await self._access_token(client)
            resp = await client.post(
                "/v2/checkout/orders",
                headers={"Authorization": f"Bearer {token}"},
                json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
            )
            if resp.status_code not in (200, 201):
                logger.error("PayPal order creation failed: HTTP %s %s", resp.status_code, resp.text[:200])
                raise PayPalError("Failed to create PayPal order")
            return resp.json()

    async def get_order(self, order_id: str) -> dict:
        async with self._client() as client:
            token = await self._access_token(client)
            resp = await client.get(
                f"/v2/checkout/orders/{order_id}",
                headers={"Authorization": f"Bearer {token}"},
            )
            if resp.status_code != 200:
                logger.error("PayPal lookup of %s failed: HTTP %s %s", order_id, resp.status_code, resp.text[:200])
                raise PayPalError("Failed to look up PayPal order")
            return resp.json()

    async def capture_order(self, order_id: str) -> dict:
        async with self._client() as client:
            token = await self._access_token(client)
            resp = await client.post(
                f"/v2/checkout/orders/{order_id}/capture",
                headers={"Authorization": f"Bearer {token}"},
                json={},
            )
            if resp.status_code not in (200, 201):
                logger.error("PayPal capture of %s failed: HTTP %s %s", order_id, resp.status_code, resp.text[:200])
                raise PayPalError("Failed to capture PayPal order")
            return resp.json()


def extract_capture(capture_result: dict) -> CapturedPayment | None:
    """Pull (capture id, amount, currency) out of an Orders v2 capture response."""
    try:
        capture = capture_result["purchase_units"][0]["payments"]["captures"][0]
        capture_id = capture["id"]
        value = capture["amount"]["value"]
        currency = capture["amount"]["currency_code"]
    except (KeyError, IndexError, TypeError):
        return None
    amount = to_amount(value)
    if not capture_id or amount is None or not currency:
        return None
    return CapturedPayment(capture_id=capture_id, amount=amount, currency=currency)


def order_owner(order: dict) -> str | None:
    """The user id stamped on the order's purchase unit at creation."""
    try:
        return order["purchase_units"][0].get("custom_id")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


class CardWalletAdapter:
    def __init__(self, reconciler: ReconciliationService, client: PayPalClient | None = None):
        self.reconciler = reconciler
        self.client = client or PayPalClient()

    @staticmethod
    def _price(tier: int | None, months: int, amount: Decimal | None) -> Decimal:
        """
        Order total for tier/months or a raw amount.

        Capture credits whatever the captured amount resolves to, so an order is
        only created when its total resolves back to exactly what was bought.
        """
        if tier is not None:
            months = months if months and months > 0 else 1
            total = total_for_subscription(tier, months)
            if total <= 0:
                raise InvalidRequest("Invalid tier or duration")
            resolved = resolve_from_amount(total)
            if resolved is None or (resolved.tier, resolved.months) != (Tier(tier), months):
                raise UnresolvableAmount(total, f"{months} months of tier {int(tier)} cannot be bought by card")
            return total

        if amount is not None:
            total = to_amount(amount)
            if total is None or total <= 0:
                raise InvalidRequest("Invalid amount")
            if resolve_from_amount(total) is None:
                raise UnresolvableAmount(total)
            return total

        raise InvalidRequest("Either tier or amount is required")

    async def create_order(
        self,
        user_id: str,
        tier: int | None = None,
        months: int = 1,
        amount: Decimal | None = None,
    ) -> CreatedOrder:
        """Create a processor order owned by `user_id`, priced by tier/months or a raw amount."""
        if not user_id:
            raise InvalidRequest("user_id is required")
        total = self._price(tier, months, amount)

        try:
            order = await self.client.create_order(total, custom_id=user_id)
        except (PayPalError, httpx.HTTPError) as e:
            logger.error("Card order creation failed: %s", e)
            raise GatewayCaptureFailed("Could not create the payment order") from e

        logger.info("Created card order %s for %s (%s %s)", order.get("id"), user_id, total, MEMBERSHIP_CURRENCY)
        return CreatedOrder(order_id=order["id"], amount=total)

    async def _check_owner(self, user_id: str, order_id: str) -> None:
        try:
            order = await self.client.get_order(order_id)
        except httpx.TimeoutException as e:
            logger.error("Card order lookup of %s timed out", order_id)
            raise GatewayCaptureFailed("Payment processor timed out") from e
        except (PayPalError, httpx.HTTPError) as e:
            logger.error("Card order lookup of %s failed: %s", order_id, e)
            raise GatewayCaptureFailed("Payment order not found") from e

        owner = order_owner(order)
        if owner != user_id:
            logger.warning("User %s tried to capture order %s owned by %s", user_id, order_id, owner)
            raise PermissionDenied("This payment order belongs to another account")

    async def capture_order(self, user_id: str, order_id: str) -> ReconcileResult:
        """
        Capture the order and credit the subscription from the captured amount.

        Only the user who created the order may capture it. Any capture failure
        raises GatewayCaptureFailed before the ledger is touched.
        """
        if not order_id:
            raise InvalidRequest("order_id is required")
        await self._check_owner(user_id, order_id)

        try:
            result = await self.client.capture_order(order_id)
        except httpx.TimeoutException as e:
            logger.error("Card capture of %s timed out", order_id)
            raise GatewayCaptureFailed("Payment processor timed out") from e
        except (PayPalError, httpx.HTTPError) as e:
            logger.error("Card capture of %s failed: %s", order_id, e)
            raise GatewayCaptureFailed("Payment was not captured") from e

        if result.get("status") != "COMPLETED":
            logger.warning("Card order %s capture status %s", order_id, result.get("status"))
            raise GatewayCaptureFailed("Payment was not completed")

        captured = extract_capture(result)
        if captured is None:
            raise GatewayCaptureFailed("Could not determine the captured amount")
        if captured.currency != MEMBERSHIP_CURRENCY:
            raise GatewayCaptureFailed(f"Unsupported currency {captured.currency}")

        event = CardCapture(
            user_id=user_id,
            amount=captured.amount,
            currency=captured.currency,
            transaction_ref=captured.capture_id,
        )
        return await self.reconciler.reconcile(event)
