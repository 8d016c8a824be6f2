"""
Module 'payments' (feature-first): point d'entrée public.
Réunit adaptateurs fournisseurs (Stripe, MTN MoMo), repository BD et cas d'usage.
"""

from .errors import PaymentProviderError
from .validators import is_valid_phone, normalize_msisdn
from .stripe_client import require_stripe, create_payment_intent, create_checkout_session, get_session, parse_event
from .momo_client import MoMoClient, get_momo_client
from .repository import insert_payment, get_payment_by_provider_id, get_payment_by_order, update_payment
from .service import (
    initiate_card_intent,
    initiate_checkout_session,
    initiate_momo_payment,
    verify_checkout_session,
    reconcile_checkout_session,
    verify_momo_payment,
    handle_momo_callback,
    handle_stripe_event,
)

__all__ = [
    # erreurs / validation
    "PaymentProviderError",
    "is_valid_phone",
    "normalize_msisdn",
    # stripe
    "require_stripe",
    "create_payment_intent",
    "create_checkout_session",
    "get_session",
    "parse_event",
    # mtn momo
    "MoMoClient",
    "get_momo_client",
    # repository
    "insert_payment",
    "get_payment_by_provider_id",
    "get_payment_by_order",
    "update_payment",
    # service
    "initiate_card_intent",
    "initiate_checkout_session",
    "initiate_momo_payment",
    "verify_checkout_session",
    "reconcile_checkout_session",
    "verify_momo_payment",
    "handle_momo_callback",
    "handle_stripe_event",
]
