"""MTN Mobile Money collection API client.

One instance is built at startup and shared by the checkout flow, the
webhook receiver and the reconciliation engine. It keeps the bearer token
cached in memory until shortly before the provider-reported expiry.
"""

import hashlib
import hmac
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

import requests

from app.services.time_utils import utcnow

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^(?:\+233|0)(\d{9})$")
PHONE_FORMAT_MESSAGE = "Invalid phone number format. Use +233XXXXXXXXX or 0XXXXXXXXX"

TOKEN_REFRESH_MARGIN_SECONDS = 300

STATUS_SUCCESSFUL = "SUCCESSFUL"
STATUS_FAILED = "FAILED"
STATUS_PENDING = "PENDING"


class GatewayError(Exception):
    """Transport level failure talking to the provider."""


class AuthError(GatewayError):
    pass


class InvalidPhoneNumber(ValueError):
    def __init__(self, message: str = PHONE_FORMAT_MESSAGE):
        super().__init__(message)


def validate_phone(phone: str | None) -> bool:
    return bool(phone) and PHONE_PATTERN.match(phone.strip()) is not None


def normalize_phone(phone: str) -> str:
    match = PHONE_PATTERN.match((phone or "").strip())
    if not match:
        raise InvalidPhoneNumber()
    return f"+233{match.group(1)}"


def generate_idempotency_key(order_id: str) -> str:
    return f"order:{order_id}:{uuid.uuid4()}"


def build_external_id(chat_id: int | str, now: datetime | None = None) -> str:
    moment = now or utcnow()
    return f"ecom_{int(moment.timestamp() * 1000)}_{chat_id}"


@dataclass(frozen=True)
class CollectionResult:
    reference_id: str
    accepted: bool
    reason: str | None = None
    request: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusResult:
    status: str
    reason: str | None = None
    financial_transaction_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    transport_error: bool = False

    def as_snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "financialTransactionId": self.financial_transaction_id,
            "raw": self.raw,
        }


def normalize_remote_status(value: Any) -> str:
    normalized = str(value or "").strip().upper()
    if normalized in {"SUCCESSFUL", "SUCCESS"}:
        return STATUS_SUCCESSFUL
    if normalized in {"FAILED", "REJECTED"}:
        return STATUS_FAILED
    return STATUS_PENDING


class MomoClient:
    def __init__(
        self,
        *,
        base_url: str,
        user_id: str,
        api_key: str,
        subscription_key: str,
        callback_secret: str,
        target_environment: str = "sandbox",
        currency: str = "EUR",
        timeout_seconds: int = 30,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.api_key = api_key
        self.subscription_key = subscription_key
        self.callback_secret = callback_secret
        self.target_environment = target_environment
        self.currency = currency
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self._clock = clock
        self._cached_token: str | None = None
        self._token_expires_at: datetime | None = None

    @classmethod
    def from_settings(cls, settings) -> "MomoClient":
        client = cls(
            base_url=settings.MOMO_API_BASE_URL,
            user_id=settings.MOMO_COLLECTION_USER_ID,
            api_key=settings.MOMO_COLLECTION_API_KEY,
            subscription_key=settings.MOMO_SUBSCRIPTION_KEY,
            callback_secret=settings.MOMO_CALLBACK_SECRET,
            target_environment=settings.MOMO_TARGET_ENVIRONMENT,
            currency=settings.MOMO_CURRENCY,
            timeout_seconds=settings.MOMO_REQUEST_TIMEOUT_SECONDS,
        )
        if not client.is_configured:
            logger.warning("MTN MoMo credentials not configured. Payment functionality will be limited.")
        return client

    @property
    def is_configured(self) -> bool:
        return bool(self.user_id and self.api_key and self.subscription_key)

    def reset_token(self) -> None:
        self._cached_token = None
        self._token_expires_at = None

    def authenticate(self) -> str:
        now = self._clock()
        if self._cached_token and self._token_expires_at and now < self._token_expires_at:
            return self._cached_token

        if not self.subscription_key:
            raise AuthError("MTN subscription key not configured")
        if not self.user_id or not self.api_key:
            logger.error(
                "MTN credentials missing: user_id=%s api_key=%s subscription_key=%s",
                "SET" if self.user_id else "MISSING",
                "SET" if self.api_key else "MISSING",
                "SET" if self.subscription_key else "MISSING",
            )
            raise AuthError("MTN user id and api key are required for authentication")

        try:
            response = self.session.post(
                f"{self.base_url}/collection/token/",
                auth=(self.user_id, self.api_key),
                headers={
                    "Content-Type": "application/json",
                    "Ocp-Apim-Subscription-Key": self.subscription_key,
                },
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise AuthError(f"MTN token request failed: {exc}") from exc

        if not response.ok:
            logger.error("MTN token request failed: %s %s", response.status_code, response.text)
            raise AuthError(f"Failed to get MTN token: HTTP {response.status_code}")

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError("MTN token response is malformed") from exc

        self._cached_token = token
        self._token_expires_at = now + timedelta(seconds=expires_in - TOKEN_REFRESH_MARGIN_SECONDS)
        logger.info("MTN access token refreshed, valid until %s", self._token_expires_at.isoformat())
        return token

    def _api_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-Target-Environment": self.target_environment,
            "Ocp-Apim-Subscription-Key": self.subscription_key,
        }

    def initiate_collection(
        self,
        amount: str,
        phone: str,
        external_id: str,
        description: str = "EcomBot Purchase",
    ) -> CollectionResult:
        """Send a request-to-pay to the payer's wallet.

        Provider-side rejection is returned as ``accepted=False``; only
        transport and authentication failures raise.
        """
        normalized_phone = normalize_phone(phone)
        token = self.authenticate()
        reference_id = str(uuid.uuid4())
        body = {
            "amount": str(amount),
            "currency": self.currency,
            "externalId": external_id,
            "payer": {"partyIdType": "MSISDN", "partyId": normalized_phone},
            "payerMessage": f"Payment for {description}",
            "payeeNote": f"EcomBot order payment - {external_id}",
        }
        headers = self._api_headers(token)
        headers["X-Reference-Id"] = reference_id

        try:
            response = self.session.post(
                f"{self.base_url}/collection/v1_0/requesttopay",
                json=body,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"MTN collection request failed: {exc}") from exc

        if response.status_code == 202:
            logger.info("MTN collection accepted: reference=%s external_id=%s", reference_id, external_id)
            return CollectionResult(reference_id=reference_id, accepted=True, request=body)

        logger.warning(
            "MTN collection rejected: status=%s external_id=%s body=%s",
            response.status_code,
            external_id,
            response.text,
        )
        return CollectionResult(
            reference_id=reference_id,
            accepted=False,
            reason=f"Payment request failed: HTTP {response.status_code}",
            request=body,
        )

    def check_status(self, reference_id: str) -> StatusResult:
        """Poll one request-to-pay.

        Never raises: any failure comes back as a FAILED-shaped result with
        ``transport_error=True`` so the caller can retry on the next cycle.
        """
        try:
            token = self.authenticate()
            response = self.session.get(
                f"{self.base_url}/collection/v1_0/requesttopay/{reference_id}",
                headers=self._api_headers(token),
                timeout=self.timeout_seconds,
            )
            if not response.ok:
                raise GatewayError(f"Failed to check payment status: HTTP {response.status_code}")
            data = response.json()
            if not isinstance(data, dict):
                raise GatewayError("Malformed status response")
        except (GatewayError, requests.RequestException, ValueError) as exc:
            logger.warning("Status check failed for reference %s: %s", reference_id, exc)
            return StatusResult(
                status=STATUS_FAILED,
                reason=f"Status check failed: {exc}",
                transport_error=True,
            )

        return StatusResult(
            status=normalize_remote_status(data.get("status")),
            reason=_reason_text(data.get("reason")),
            financial_transaction_id=data.get("financialTransactionId"),
            raw=data,
        )

    def validate_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature or not self.callback_secret:
            logger.warning("Missing webhook signature or secret")
            return False

        expected = hmac.new(
            self.callback_secret.encode("utf-8"),
            raw_body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode("ascii"))


def _reason_text(reason: Any) -> str | None:
    # Collection API returns reason either as a string or {"code", "message"}.
    if reason is None:
        return None
    if isinstance(reason, dict):
        return reason.get("message") or reason.get("code")
    return str(reason)
