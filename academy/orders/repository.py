"""
Accès aux données pour les commandes (table orders).
Écritures via le client service-role; chaque écriture est un aller-retour indépendant
(pas de transaction englobant commande, paiement et accès).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import academy.infra.supabase_client as supabase_client
from academy.catalog.repository import price_of, currency_of

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "completed", "failed", "refunded")

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def create_pending_order(*, user_id: str, product: Dict[str, Any], payment_method: str) -> Optional[dict]:
    """
    Insère une commande 'pending' pour un produit.
    - amount/currency/product_type recopiés depuis le produit (source de vérité du prix)
    - Retourne la ligne créée (avec id) ou None en cas d'échec.
    """
    row = {
        "user_id": user_id,
        "product_id": str(product.get("id")),
        "product_type": product.get("type"),
        "amount": price_of(product),
        "currency": currency_of(product),
        "status": "pending",
        "payment_method": payment_method,
    }
    try:
        res = supabase_client.get_service_supabase().table("orders").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.create_pending_order failed user_id=%s product_id=%s", user_id, row["product_id"])
        return None

def set_order_status(order_id: str, status: str) -> bool:
    """Met à jour orders.status (+ updated_at). Retourne False si l'écriture échoue."""
    if status not in ORDER_STATUSES:
        raise ValueError(f"Statut de commande inconnu: {status}")
    try:
        (
            supabase_client.get_service_supabase()
            .table("orders")
            .update({"status": status, "updated_at": _now_iso()})
            .eq("id", order_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("orders.repository.set_order_status failed order_id=%s status=%s", order_id, status)
        return False

def get_order(order_id: str) -> Optional[dict]:
    if not order_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("*")
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        return None

def get_user_order(order_id: str, user_id: str) -> Optional[dict]:
    """Commande appartenant à l'utilisateur (None si inconnue ou d'un autre utilisateur)."""
    order = get_order(order_id)
    if not order or str(order.get("user_id")) != str(user_id):
        return None
    return order

def list_user_orders(user_id: str, limit: int = 50) -> List[dict]:
    """Historique des commandes de l'utilisateur (plus récentes d'abord)."""
    if not user_id:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("id, product_id, product_type, amount, currency, status, payment_method, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_user_orders failed user_id=%s", user_id)
        return []
