"""
Adaptateur MTN Mobile Money (API Collection).
- Jeton OAuth (Basic api_user:api_key) mis en cache jusqu'à 100 s avant son expiration
- requesttopay: demande de paiement poussée sur le téléphone du client
- Statut d'une demande par referenceId (SUCCESSFUL | FAILED | PENDING)
"""
from typing import Any, Dict, Optional
import logging
import time
import uuid

import httpx

from academy import config
from academy.payments.errors import PaymentProviderError
from academy.payments.validators import normalize_msisdn

logger = logging.getLogger(__name__)

PROVIDER = "mtn_momo"
SANDBOX_URL = "https://sandbox.momodeveloper.mtn.com"
PRODUCTION_URL = "https://proxy.momoapi.mtn.com"
TOKEN_TTL_SECONDS = 3600
TOKEN_SAFETY_MARGIN = 100

def _error_message(e: Exception, fallback: str) -> str:
    if isinstance(e, httpx.HTTPStatusError):
        try:
            body = e.response.json()
            msg = body.get("message") or body.get("reason") or body.get("error")
            if msg:
                return str(msg)
        except ValueError:
            pass
        return f"{fallback} (HTTP {e.response.status_code})"
    return str(e) or fallback

class MoMoClient:
    def __init__(
        self,
        *,
        subscription_key: str,
        api_user: str,
        api_key: str,
        environment: str = "sandbox",
        callback_url: str = "",
        currency: str = "EUR",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_user = api_user
        self.api_key = api_key
        self.environment = environment
        self.callback_url = callback_url
        self.currency = currency
        base_url = PRODUCTION_URL if environment == "production" else SANDBOX_URL
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Ocp-Apim-Subscription-Key": subscription_key,
                "X-Target-Environment": environment,
                "Content-Type": "application/json",
            },
        )
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

    def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token
        try:
            resp = self._http.post("/collection/token/", auth=(self.api_user, self.api_key))
            resp.raise_for_status()
            token = resp.json().get("access_token")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("momo: access token request failed: %s", e)
            raise PaymentProviderError(PROVIDER, "Failed to authenticate with MTN Mobile Money")
        if not token:
            raise PaymentProviderError(PROVIDER, "Access token not found in MTN response")
        self._access_token = token
        self._token_expiry = time.monotonic() + TOKEN_TTL_SECONDS - TOKEN_SAFETY_MARGIN
        return token

    def request_payment(self, *, amount: float, phone_number: str, order_id: str, description: str) -> str:
        """
        Envoie une demande requesttopay et retourne le referenceId (UUID4, X-Reference-Id).
        Soulève PaymentProviderError si MTN refuse la demande.
        """
        token = self._get_access_token()
        reference_id = str(uuid.uuid4())
        payload = {
            "amount": f"{float(amount):.2f}",
            "currency": self.currency,
            "externalId": order_id,
            "payer": {"partyIdType": "MSISDN", "partyId": normalize_msisdn(phone_number)},
            "payerMessage": description,
            "payeeNote": f"Payment for order {order_id}",
        }
        headers = {"Authorization": f"Bearer {token}", "X-Reference-Id": reference_id}
        if self.callback_url:
            headers["X-Callback-Url"] = self.callback_url
        try:
            resp = self._http.post("/collection/v1_0/requesttopay", json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("momo: requesttopay failed order_id=%s: %s", order_id, e)
            raise PaymentProviderError(PROVIDER, _error_message(e, "Payment request failed"))
        logger.info("momo: requesttopay accepted order_id=%s ref=%s", order_id, reference_id)
        return reference_id

    def get_payment_status(self, reference_id: str) -> Dict[str, Any]:
        """
        Statut d'une demande: {"status": "SUCCESSFUL|FAILED|PENDING", "financialTransactionId", ...}.
        Soulève PaymentProviderError si le statut ne peut pas être lu.
        """
        token = self._get_access_token()
        try:
            resp = self._http.get(
                f"/collection/v1_0/requesttopay/{reference_id}",
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("momo: status lookup failed ref=%s: %s", reference_id, e)
            raise PaymentProviderError(PROVIDER, _error_message(e, "Failed to verify payment status"))

    def close(self) -> None:
        self._http.close()

_client: Optional[MoMoClient] = None

def get_momo_client() -> MoMoClient:
    """Client MTN MoMo partagé (jeton OAuth réutilisé entre requêtes)."""
    global _client
    if _client is None:
        if not config.MTN_MOMO_SUBSCRIPTION_KEY or not config.MTN_MOMO_API_USER or not config.MTN_MOMO_API_KEY:
            raise RuntimeError("MTN_MOMO_SUBSCRIPTION_KEY/MTN_MOMO_API_USER/MTN_MOMO_API_KEY manquants")
        _client = MoMoClient(
            subscription_key=config.MTN_MOMO_SUBSCRIPTION_KEY,
            api_user=config.MTN_MOMO_API_USER,
            api_key=config.MTN_MOMO_API_KEY,
            environment=config.MTN_MOMO_ENVIRONMENT,
            callback_url=config.MTN_MOMO_CALLBACK_URL,
            currency=config.MTN_MOMO_CURRENCY,
            timeout=config.MTN_MOMO_TIMEOUT,
        )
    return _client

def close_momo_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
