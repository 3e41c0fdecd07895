"""Payment processor client and webhook signature checks."""

import hashlib
import hmac
import logging
import time
from decimal import ROUND_HALF_UP, Decimal

import httpx

from drivingschool.core import config

logger = logging.getLogger(__name__)


class PaymentProcessorError(Exception):
    """Raised when the payment processor rejects or fails a request."""


class WebhookSignatureError(Exception):
    pass


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class StripeClient:
    """Minimal client for the payment intent endpoints of the Stripe REST API."""

    def __init__(self, secret_key: str | None = None, api_base: str | None = None, client: httpx.Client | None = None):
        self.secret_key = secret_key or config.STRIPE_SECRET_KEY
        self.api_base = (api_base or config.STRIPE_API_BASE).rstrip('/')
        self._client = client or httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS)

    def create_payment_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> dict:
        form = {
            'amount': str(amount),
            'currency': currency,
            'automatic_payment_methods[enabled]': 'true',
        }
        for key, value in metadata.items():
            form[f'metadata[{key}]'] = str(value)

        try:
            response = self._client.post(
                f'{self.api_base}/payment_intents',
                data=form,
                auth=(self.secret_key, ''),
            )
            response.raise_for_status()
            intent = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error('Payment intent request failed with status %s', exc.response.status_code)
            raise PaymentProcessorError('Payment processor rejected the request.') from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PaymentProcessorError('Payment processor unavailable.') from exc

        if not intent.get('id') or not intent.get('client_secret'):
            raise PaymentProcessorError('Payment processor returned an incomplete payment intent.')
        return intent


def get_stripe_client() -> StripeClient:
    return StripeClient()


def compute_webhook_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f'{timestamp}.'.encode('utf-8') + payload
    return hmac.new(secret.encode('utf-8'), signed_payload, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(','):
        key, _, value = item.strip().partition('=')
        if key == 't':
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == 'v1' and value:
            signatures.append(value)
    return timestamp, signatures


def verify_webhook_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    """Check a `t=...,v1=...` signature header against the raw request body."""
    if not secret:
        raise WebhookSignatureError('Webhook secret is not configured.')

    timestamp, signatures = parse_signature_header(header or '')
    if timestamp is None or not signatures:
        raise WebhookSignatureError('Malformed signature header.')

    expected = compute_webhook_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, signature) for signature in signatures):
        raise WebhookSignatureError('Signature mismatch.')

    tolerance = config.STRIPE_WEBHOOK_TOLERANCE_SECONDS if tolerance_seconds is None else tolerance_seconds
    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError('Signature timestamp outside the tolerance window.')
