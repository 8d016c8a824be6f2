"""
Cas d'usage 'payments': orchestre catalogue, garde d'accès, commandes, fournisseurs et droits.

Initiation (carte PaymentIntent, Stripe Checkout, MTN MoMo):
  1) produit actif (404 sinon) et pas d'accès actif existant (400 sinon), avant toute écriture
  2) commande 'pending'
  3) appel fournisseur; en cas de refus: commande 'failed' et HTTP 400 avec le message fournisseur
  4) ligne payments 'pending' (échec journalisé, non bloquant) puis commande 'processing'

Réconciliation (vérification, webhooks): le fournisseur est la source de vérité;
commande 'completed', paiement inséré s'il est absent, accès attribué de manière idempotente.
Les écritures sont séquentielles et indépendantes (aucune transaction).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from fastapi import HTTPException

from academy.config import APP_URL, STRIPE_DEFAULT_CURRENCY
from academy.catalog import repository as catalog_repo
from academy.orders import repository as orders_repo
from academy.access import service as access_service
from academy.notifications import repository as notifications_repo
from . import repository
from . import stripe_client
from . import momo_client
from .errors import PaymentProviderError
from .validators import is_valid_phone

logger = logging.getLogger(__name__)

STRIPE = "stripe"
MTN_MOMO = "mtn_momo"

# statut MTN -> (statut paiement, statut commande)
MOMO_STATUS_MAP: Dict[str, Tuple[str, str]] = {
    "SUCCESSFUL": ("completed", "completed"),
    "FAILED": ("failed", "failed"),
}
MOMO_PENDING = ("pending", "processing")

MOMO_INSTRUCTIONS = [
    "1. Check your phone for MTN Mobile Money prompt",
    "2. Enter your PIN to approve the payment",
    "3. Wait for confirmation",
]

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# --- Étapes communes de l'initiation ---

def _load_purchasable_product(user_id: str, product_id: str) -> Dict[str, Any]:
    product = catalog_repo.get_active_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if access_service.has_active_access(user_id, product_id):
        raise HTTPException(status_code=400, detail="You already have access to this product")
    return product

def _create_order(user_id: str, product: Dict[str, Any], payment_method: str) -> Dict[str, Any]:
    order = orders_repo.create_pending_order(user_id=user_id, product=product, payment_method=payment_method)
    if not order or not order.get("id"):
        raise HTTPException(status_code=500, detail="Failed to create order")
    logger.info("order created id=%s user_id=%s product_id=%s method=%s", order["id"], user_id, product.get("id"), payment_method)
    return order

def _fail_order(order_id: str, error: PaymentProviderError) -> HTTPException:
    orders_repo.set_order_status(order_id, "failed")
    logger.warning("payment initiation rejected order_id=%s provider=%s: %s", order_id, error.provider, error.message)
    return HTTPException(status_code=400, detail=error.message or "Payment initialization failed")

def _record_pending_payment(
    order: Dict[str, Any],
    provider: str,
    provider_payment_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    row = repository.insert_payment(
        order_id=order["id"],
        user_id=order["user_id"],
        amount=order["amount"],
        currency=order["currency"],
        provider=provider,
        provider_payment_id=provider_payment_id,
        status="pending",
        metadata=metadata,
    )
    if row is None:
        # Non bloquant: la commande reste réconciliable via la référence fournisseur
        logger.error("payment record not written order_id=%s ref=%s", order["id"], provider_payment_id)
    orders_repo.set_order_status(order["id"], "processing")

def _provider_metadata(order: Dict[str, Any], product: Dict[str, Any]) -> Dict[str, str]:
    return {
        "order_id": str(order["id"]),
        "user_id": str(order["user_id"]),
        "product_id": str(product.get("id")),
        "product_type": str(product.get("type") or ""),
    }

# --- Initiation ---

def initiate_card_intent(*, user_id: str, product_id: str, amount: float, currency: Optional[str] = None) -> Dict[str, Any]:
    """
    Paiement carte via PaymentIntent.
    - amount/currency du client doivent correspondre au prix du produit (le produit fait foi)
    Retour: {success, clientSecret, paymentIntentId, orderId}
    """
    product = _load_purchasable_product(user_id, product_id)
    price = catalog_repo.price_of(product)
    product_currency = catalog_repo.currency_of(product)
    if abs(float(amount) - price) > 0.005:
        raise HTTPException(status_code=400, detail="Amount does not match product price")
    if currency and currency.upper() != product_currency:
        raise HTTPException(status_code=400, detail="Currency does not match product currency")
    stripe_client.require_stripe()

    order = _create_order(user_id, product, STRIPE)
    try:
        intent = stripe_client.create_payment_intent(
            amount=price,
            currency=product_currency,
            metadata=_provider_metadata(order, product),
        )
    except PaymentProviderError as e:
        raise _fail_order(order["id"], e)

    _record_pending_payment(order, STRIPE, intent["id"])
    return {
        "success": True,
        "clientSecret": intent.get("client_secret"),
        "paymentIntentId": intent["id"],
        "orderId": order["id"],
    }

def initiate_checkout_session(*, user_id: str, product_id: str) -> Dict[str, Any]:
    """
    Paiement carte via Stripe Checkout (page hébergée).
    La ligne payments est indexée par l'id de session; le PaymentIntent n'existe qu'au paiement.
    Retour: {success, url, sessionId, orderId}
    """
    product = _load_purchasable_product(user_id, product_id)
    stripe_client.require_stripe()

    order = _create_order(user_id, product, STRIPE)
    try:
        session = stripe_client.create_checkout_session(
            product=product,
            amount=order["amount"],
            currency=order["currency"],
            success_url=f"{APP_URL}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}&order_id={order['id']}",
            cancel_url=f"{APP_URL}/checkout?product={product_id}&canceled=true",
            metadata=_provider_metadata(order, product),
            client_reference_id=str(order["id"]),
        )
    except PaymentProviderError as e:
        raise _fail_order(order["id"], e)

    _record_pending_payment(order, STRIPE, session["id"])
    return {"success": True, "url": session.get("url"), "sessionId": session["id"], "orderId": order["id"]}

def initiate_momo_payment(*, user_id: str, product_id: str, phone_number: str) -> Dict[str, Any]:
    """
    Paiement MTN Mobile Money (demande poussée sur le téléphone).
    - Format téléphone: 07XXXXXXXX ou +256XXXXXXXXX (400 sinon)
    Retour: {success, orderId, referenceId, message, instructions}
    """
    if not is_valid_phone(phone_number):
        raise HTTPException(
            status_code=400,
            detail="Invalid phone number format. Use format: 07XXXXXXXX or +256XXXXXXXXX",
        )
    product = _load_purchasable_product(user_id, product_id)
    client = momo_client.get_momo_client()

    order = _create_order(user_id, product, MTN_MOMO)
    try:
        reference_id = client.request_payment(
            amount=order["amount"],
            phone_number=phone_number,
            order_id=str(order["id"]),
            description=f"Payment for {product.get('name') or 'product'}",
        )
    except PaymentProviderError as e:
        raise _fail_order(order["id"], e)

    _record_pending_payment(order, MTN_MOMO, reference_id, metadata={"phone_number": phone_number})
    return {
        "success": True,
        "orderId": order["id"],
        "referenceId": reference_id,
        "message": "Payment request sent. Please approve on your phone.",
        "instructions": list(MOMO_INSTRUCTIONS),
    }

# --- Réconciliation commune ---

def _complete_payment(
    refs: List[str],
    *,
    order_id: Optional[str],
    user_id: str,
    amount: float,
    currency: str,
    provider: str,
) -> Dict[str, Any]:
    """
    Paiement 'completed' pour l'une des références fournisseur, sans doublon:
    - ligne existante: passée à 'completed' si nécessaire
    - aucune référence connue: ligne du fournisseur déjà créée pour la commande
      (Checkout indexé par l'id de session, PaymentIntent recopié en metadata)
    - sinon insertion conditionnelle (ignorée si une ligne concurrente existe déjà)
    """
    for ref in refs:
        existing = repository.get_payment_by_provider_id(ref)
        if existing:
            if existing.get("status") != "completed":
                repository.update_payment(existing["id"], {"status": "completed"})
            return {**existing, "status": "completed"}

    existing = repository.get_payment_by_order(order_id, provider) if order_id else None
    if existing:
        metadata = dict(existing.get("metadata") or {})
        metadata.setdefault("payment_intent_id", refs[0])
        changes = {"status": "completed", "metadata": metadata}
        if existing.get("status") != "completed" or existing.get("metadata") != metadata:
            repository.update_payment(existing["id"], changes)
        return {**existing, **changes}

    row = repository.insert_payment(
        order_id=order_id,
        user_id=user_id,
        amount=amount,
        currency=currency,
        provider=provider,
        provider_payment_id=refs[0],
        status="completed",
    )
    if row is None:
        logger.error("payment record not written order_id=%s ref=%s", order_id, refs[0])
    return row or {}

def _grant(user_id: str, product_id: str, product_type: Optional[str], order_id: Optional[str]) -> Dict[str, Any]:
    try:
        return access_service.grant_access(
            user_id=user_id,
            product_id=product_id,
            product_type=product_type,
            order_id=order_id,
        )
    except access_service.AccessGrantError as e:
        logger.error("access grant failed user_id=%s product_id=%s: %s", user_id, product_id, e)
        raise HTTPException(status_code=500, detail="Failed to grant access")

def _session_refs(session: Dict[str, Any]) -> List[str]:
    refs = []
    intent = session.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    if intent:
        refs.append(str(intent))
    if session.get("id"):
        refs.append(str(session["id"]))
    return refs

def reconcile_checkout_session(session: Dict[str, Any]) -> Dict[str, Any]:
    """
    Applique une session Checkout payée: commande 'completed', paiement, accès.
    Suppose payment_status == 'paid' et metadata {user_id, product_id} présentes.
    """
    meta = stripe_client.session_metadata(session)
    user_id = meta["user_id"]
    product_id = meta["product_id"]
    order_id = session.get("client_reference_id") or meta.get("order_id")

    if order_id and not orders_repo.set_order_status(order_id, "completed"):
        logger.error("order not completed order_id=%s session_id=%s", order_id, session.get("id"))

    amount_total = session.get("amount_total")
    payment = _complete_payment(
        _session_refs(session),
        order_id=order_id,
        user_id=user_id,
        amount=(amount_total / 100) if amount_total else 0.0,
        currency=str(session.get("currency") or STRIPE_DEFAULT_CURRENCY).upper(),
        provider=STRIPE,
    )
    access = _grant(user_id, product_id, meta.get("product_type"), order_id)
    return {"order_id": order_id, "payment": payment, "access": access}

def verify_checkout_session(session_id: str, current_user_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Vérification après retour du checkout (alternative/complément au webhook).
    - session non payée: HTTP 400, aucune écriture
    - metadata user_id/product_id absentes: HTTP 400 (aucune autre clé de rattachement)
    - session d'un autre utilisateur: HTTP 403
    Idempotent: plusieurs appels ne créent ni second paiement ni second accès.
    """
    try:
        session = stripe_client.get_session(session_id)
    except PaymentProviderError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if session.get("payment_status") != "paid":
        raise HTTPException(status_code=400, detail="Payment not completed or pending")

    meta = stripe_client.session_metadata(session)
    if not meta.get("user_id") or not meta.get("product_id"):
        raise HTTPException(status_code=400, detail="Missing metadata in session")
    if current_user_id and str(meta["user_id"]) != str(current_user_id):
        raise HTTPException(status_code=403, detail="Session belongs to another user")

    reconcile_checkout_session(session)
    logger.info("checkout verified session_id=%s user_id=%s product_id=%s", session_id, meta["user_id"], meta["product_id"])
    return {"success": True, "message": "Access granted"}

# --- Webhook Stripe ---

def handle_stripe_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Traite un événement Stripe déjà authentifié (signature vérifiée par la vue).
    - checkout.session.completed: même réconciliation que verify_checkout_session
    - payment_intent.succeeded: paiement/commande 'completed' et accès (si metadata.order_id)
    - payment_intent.payment_failed: paiement/commande 'failed'
    Les autres types sont ignorés. Réponse: {"received": True}
    """
    event_type = (event or {}).get("type")
    obj = ((event or {}).get("data") or {}).get("object") or {}
    meta = stripe_client.session_metadata(obj)

    if event_type == "checkout.session.completed":
        if obj.get("payment_status") == "paid" and meta.get("user_id") and meta.get("product_id"):
            reconcile_checkout_session(obj)
        else:
            logger.warning("checkout.session.completed skipped session_id=%s payment_status=%s", obj.get("id"), obj.get("payment_status"))

    elif event_type == "payment_intent.succeeded":
        order_id = meta.get("order_id")
        if order_id:
            orders_repo.set_order_status(order_id, "completed")
            _complete_payment(
                [obj["id"]],
                order_id=order_id,
                user_id=meta.get("user_id") or "",
                amount=(obj.get("amount_received") or obj.get("amount") or 0) / 100,
                currency=str(obj.get("currency") or STRIPE_DEFAULT_CURRENCY).upper(),
                provider=STRIPE,
            )
            if meta.get("user_id") and meta.get("product_id"):
                _grant(meta["user_id"], meta["product_id"], meta.get("product_type"), order_id)

    elif event_type == "payment_intent.payment_failed":
        payment = repository.get_payment_by_provider_id(obj.get("id"), STRIPE)
        if payment:
            repository.update_payment(payment["id"], {"status": "failed"})
        if meta.get("order_id"):
            orders_repo.set_order_status(meta["order_id"], "failed")
        logger.info("payment failed intent_id=%s order_id=%s", obj.get("id"), meta.get("order_id"))

    else:
        logger.info("stripe event ignored type=%s", event_type)

    return {"received": True}

# --- MTN Mobile Money ---

def _momo_status(reference_id: str) -> Dict[str, Any]:
    try:
        return momo_client.get_momo_client().get_payment_status(reference_id)
    except PaymentProviderError as e:
        logger.error("momo status unavailable ref=%s: %s", reference_id, e.message)
        raise HTTPException(status_code=500, detail="Failed to verify payment status")

def _apply_momo_status(
    payment: Dict[str, Any],
    order: Dict[str, Any],
    momo: Dict[str, Any],
    stamp_key: str,
) -> Tuple[str, str]:
    """Répercute le statut MTN sur payments/orders et attribue l'accès si SUCCESSFUL."""
    momo_status = str(momo.get("status") or "PENDING").upper()
    payment_status, order_status = MOMO_STATUS_MAP.get(momo_status, MOMO_PENDING)

    metadata = dict(payment.get("metadata") or {})
    metadata["financial_transaction_id"] = momo.get("financialTransactionId")
    metadata[stamp_key] = _now_iso()
    if not repository.update_payment(payment["id"], {"status": payment_status, "metadata": metadata}):
        logger.error("momo payment update failed id=%s", payment["id"])
    if not orders_repo.set_order_status(order["id"], order_status):
        logger.error("momo order update failed id=%s", order["id"])

    if momo_status == "SUCCESSFUL":
        _grant(str(order["user_id"]), str(order["product_id"]), order.get("product_type"), str(order["id"]))
    return payment_status, order_status

def verify_momo_payment(*, user_id: str, order_id: str, reference_id: str) -> Dict[str, Any]:
    """
    Interrogation du statut MTN par le client (polling après la demande de paiement).
    - commande inconnue ou d'un autre utilisateur: 404
    - statut MTN illisible: 500
    - ligne payments absente pour (order_id, referenceId): 404
    """
    order = orders_repo.get_user_order(order_id, user_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    momo = _momo_status(reference_id)

    payment = repository.get_payment_by_provider_id(reference_id, MTN_MOMO)
    if not payment or str(payment.get("order_id")) != str(order_id):
        raise HTTPException(status_code=404, detail="Payment record not found")

    payment_status, order_status = _apply_momo_status(payment, order, momo, "verified_at")
    momo_status = str(momo.get("status") or "PENDING").upper()
    if momo_status == "SUCCESSFUL":
        message = "Payment successful! You now have access to the product."
    elif momo_status == "FAILED":
        message = "Payment failed. Please try again."
    else:
        message = "Payment is still processing. Please check back in a moment."
    return {
        "success": True,
        "status": momo_status,
        "order": {"id": order["id"], "status": order_status},
        "payment": {"status": payment_status, "transactionId": momo.get("financialTransactionId")},
        "message": message,
    }

def handle_momo_callback(reference_id: str) -> Dict[str, Any]:
    """
    Callback MTN (X-Callback-Url): le corps n'est pas signé, le statut est donc relu chez MTN.
    Complète la commande restée 'processing' après la demande initiale.
    """
    payment = repository.get_payment_by_provider_id(reference_id, MTN_MOMO)
    if not payment:
        logger.error("momo callback for unknown reference ref=%s", reference_id)
        raise HTTPException(status_code=404, detail="Payment not found")
    order = orders_repo.get_order(payment.get("order_id"))
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    previous_status = payment.get("status")
    momo = _momo_status(reference_id)
    payment_status, _ = _apply_momo_status(payment, order, momo, "webhook_received_at")

    momo_status = str(momo.get("status") or "").upper()
    if payment_status == previous_status:
        # statut inchangé: déjà notifié
        logger.info("momo callback replayed ref=%s status=%s", reference_id, payment_status)
    elif momo_status == "SUCCESSFUL":
        product = catalog_repo.get_product(order["product_id"]) or {}
        notifications_repo.insert_notification(
            user_id=order["user_id"],
            title="Payment Successful",
            message=f"Your payment for {product.get('name') or 'your product'} has been confirmed. You now have full access!",
            link=notifications_repo.product_link(order["product_id"], order.get("product_type")),
        )
    elif momo_status == "FAILED":
        notifications_repo.insert_notification(
            user_id=order["user_id"],
            title="Payment Failed",
            message="Your payment attempt failed. Please try again or contact support.",
            link=f"/checkout?productId={order['product_id']}",
        )
    return {"success": True, "message": "Webhook processed successfully"}
