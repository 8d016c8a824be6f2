"""
Lecture du catalogue (tables products, signal_plans, trading_bots).
Les erreurs Supabase sont journalisées et transformées en None: un produit illisible
est traité comme un produit introuvable par les couches supérieures.
"""
from typing import Any, Dict, Optional
import logging
import academy.infra.supabase_client as supabase_client
from academy.config import STRIPE_DEFAULT_CURRENCY

logger = logging.getLogger(__name__)

def _first(res) -> Optional[Dict[str, Any]]:
    rows = getattr(res, "data", None) or []
    return rows[0] if isinstance(rows, list) and rows else None

def get_product(product_id: str) -> Optional[dict]:
    if not product_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("*")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("catalog.repository.get_product failed id=%s", product_id)
        return None

def get_active_product(product_id: str) -> Optional[dict]:
    """
    Produit vendable: existe et is_active = true.
    Retour: dict {id, name, price, currency, type, ...} ou None.
    """
    if not product_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("*")
            .eq("id", product_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("catalog.repository.get_active_product failed id=%s", product_id)
        return None

def get_signal_plan(product_id: str) -> Optional[dict]:
    """Plan de signaux associé à un produit 'signal' (interval: weekly | monthly)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("signal_plans")
            .select("*")
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("catalog.repository.get_signal_plan failed product_id=%s", product_id)
        return None

def get_trading_bot(product_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("trading_bots")
            .select("*")
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("catalog.repository.get_trading_bot failed product_id=%s", product_id)
        return None

def price_of(product: Dict[str, Any]) -> float:
    """
    Prix d'un produit en float.
    - Autorise product["price"] à être str|float|int (numeric Postgres renvoyé en str).
    - Retourne 0.0 si parsing impossible.
    """
    try:
        return float(product.get("price") or 0)
    except (TypeError, ValueError):
        return 0.0

def currency_of(product: Dict[str, Any], default: Optional[str] = None) -> str:
    """Devise du produit, sinon devise Stripe par défaut (STRIPE_DEFAULT_CURRENCY)."""
    return str(product.get("currency") or default or STRIPE_DEFAULT_CURRENCY).upper()
