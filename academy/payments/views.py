import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from academy.utils.security import require_user
from academy.utils.rate_limit import optional_rate_limit
from academy.payments import service as payments_service
from academy.payments import stripe_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["Payments API"])
webhooks_router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"], include_in_schema=False)

class _Body(BaseModel):
    # Champs requis vides ou blancs -> erreur de validation (400)
    model_config = ConfigDict(str_strip_whitespace=True)

class CreateIntentBody(_Body):
    product_id: str = Field(alias="productId", min_length=1)
    amount: float = Field(gt=0)
    currency: Optional[str] = None

class CreateSessionBody(_Body):
    product_id: str = Field(alias="productId", min_length=1)

class MoMoPaymentBody(_Body):
    product_id: str = Field(alias="productId", min_length=1)
    phone_number: str = Field(alias="phoneNumber", min_length=1)

class VerifySessionBody(_Body):
    session_id: str = Field(alias="sessionId", min_length=1)

class MoMoVerifyBody(_Body):
    reference_id: str = Field(alias="referenceId", min_length=1)
    order_id: str = Field(alias="orderId", min_length=1)

class MoMoCallbackBody(_Body):
    reference_id: str = Field(alias="referenceId", min_length=1)


# module academy.payments.views
@router.post("/stripe/create-intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_payment_intent(body: CreateIntentBody, user: Dict[str, Any] = Depends(require_user)):
    """
    Paiement carte (PaymentIntent) pour un produit.
    - Entrée JSON: {"productId", "amount", "currency"?}
    - Retour: {success, clientSecret, paymentIntentId, orderId}
    - Erreurs: 400 (champs, montant, accès existant, refus Stripe), 404 produit, 500 commande
    """
    return payments_service.initiate_card_intent(
        user_id=user["id"],
        product_id=body.product_id,
        amount=body.amount,
        currency=body.currency,
    )

@router.post("/stripe/create-session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout_session(body: CreateSessionBody, user: Dict[str, Any] = Depends(require_user)):
    """
    Session Stripe Checkout (page hébergée) pour un produit.
    - Retour: {success, url, sessionId, orderId}
    """
    return payments_service.initiate_checkout_session(user_id=user["id"], product_id=body.product_id)

@router.post("/mtn/create-payment", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def create_momo_payment(body: MoMoPaymentBody, user: Dict[str, Any] = Depends(require_user)):
    """
    Demande de paiement MTN Mobile Money.
    - Retour: {success, orderId, referenceId, message, instructions}
    """
    return payments_service.initiate_momo_payment(
        user_id=user["id"],
        product_id=body.product_id,
        phone_number=body.phone_number,
    )

@router.post("/verify", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def verify_checkout(body: VerifySessionBody, user: Dict[str, Any] = Depends(require_user)):
    """
    Alternative au webhook: confirme une session Checkout payée et attribue l'accès.
    - 400 si non payée ou metadata absentes, 403 si session d'un autre utilisateur
    """
    return payments_service.verify_checkout_session(body.session_id, current_user_id=user["id"])

@router.post("/mtn/verify-payment", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def verify_momo(body: MoMoVerifyBody, user: Dict[str, Any] = Depends(require_user)):
    """Interroge MTN pour une demande en cours et répercute le statut (commande, paiement, accès)."""
    return payments_service.verify_momo_payment(
        user_id=user["id"],
        order_id=body.order_id,
        reference_id=body.reference_id,
    )

@webhooks_router.post("/stripe")
async def webhook_stripe(request: Request):
    """
    Webhook Stripe.
    - Signature: stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET), 400 si invalide
    - Traitement: payments_service.handle_stripe_event
    """
    event = await stripe_client.parse_event(request)
    result = await run_in_threadpool(payments_service.handle_stripe_event, event)
    logger.info("payments.webhook stripe type=%s id=%s", event.get("type"), event.get("id"))
    return result

@webhooks_router.post("/mtn")
def webhook_mtn(body: MoMoCallbackBody):
    """Callback MTN MoMo: statut relu chez MTN par referenceId puis réconcilié."""
    return payments_service.handle_momo_callback(body.reference_id)
