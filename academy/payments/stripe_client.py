"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
Les objets Stripe sont convertis en dict pour que la couche service reste indépendante du SDK.
"""
from typing import Any, Dict, Optional
import logging

import stripe
from fastapi import HTTPException, Request

from academy.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from academy.payments.errors import PaymentProviderError

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

# module academy.payments.stripe_client
def require_stripe():
    """
    Configure stripe.api_key via STRIPE_SECRET_KEY.
    Soulève HTTPException(500) si la clé est absente (configuration serveur incomplète).
    """
    if not STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="STRIPE_SECRET_KEY manquant")
    stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def to_minor_units(amount: float) -> int:
    """Montant en centimes (Stripe attend un entier en unité mineure)."""
    return int(round(float(amount) * 100))

def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    return to_dict() if callable(to_dict) else dict(obj)

def _provider_message(e: Exception, fallback: str) -> str:
    return getattr(e, "user_message", None) or str(e) or fallback

def create_payment_intent(*, amount: float, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
    """
    Crée un PaymentIntent (paiement par carte côté client via clientSecret).
    Retour: dict incluant "id" et "client_secret".
    """
    require_stripe()
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as e:
        logger.warning("stripe.create_payment_intent failed: %s", e)
        raise PaymentProviderError(PROVIDER, _provider_message(e, "Failed to create payment intent"))
    return _as_dict(intent)

def create_checkout_session(
    *,
    product: Dict[str, Any],
    amount: float,
    currency: str,
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, str],
    client_reference_id: str,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout pour un seul produit.
    - metadata recopiées sur la session et sur le PaymentIntent (webhooks payment_intent.*)
    - client_reference_id: identifiant de la commande
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    require_stripe()
    product_data: Dict[str, Any] = {"name": product.get("name") or "Product"}
    if product.get("description"):
        product_data["description"] = product["description"]
    if product.get("image_url"):
        product_data["images"] = [product["image_url"]]
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "quantity": 1,
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": to_minor_units(amount),
                    "product_data": product_data,
                },
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            client_reference_id=client_reference_id,
        )
    except stripe.StripeError as e:
        logger.warning("stripe.create_checkout_session failed: %s", e)
        raise PaymentProviderError(PROVIDER, _provider_message(e, "Failed to create checkout session"))
    return _as_dict(session)

def get_session(session_id: str) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant (source de vérité du paiement).
    Retour: dict session incluant "id", "payment_status", "payment_intent", "metadata", etc.
    """
    require_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.warning("stripe.get_session failed session_id=%s: %s", session_id, e)
        raise PaymentProviderError(PROVIDER, _provider_message(e, "Checkout session not found"))
    return _as_dict(session)

async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Soulève HTTPException(400) si la signature ou le payload est invalide.
    """
    require_stripe()
    if not STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET manquant")
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    try:
        event = stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("stripe webhook signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail="Invalid signature")
    return _as_dict(event)

def session_metadata(session: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Métadonnées d'une session/intent, toujours sous forme de dict."""
    meta = (session or {}).get("metadata") or {}
    return dict(meta) if not isinstance(meta, dict) else meta
