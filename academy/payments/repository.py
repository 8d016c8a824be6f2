"""
Accès aux données pour la feature 'payments' (table payments).
provider_payment_id est la clé d'idempotence (contrainte unique côté base).
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

PROVIDERS = ("stripe", "mtn_momo")
PAYMENT_STATUSES = ("pending", "completed", "failed")

def _check(*, provider: Optional[str] = None, status: Optional[str] = None) -> None:
    if provider is not None and provider not in PROVIDERS:
        raise ValueError(f"Fournisseur de paiement inconnu: {provider}")
    if status is not None and status not in PAYMENT_STATUSES:
        raise ValueError(f"Statut de paiement inconnu: {status}")

# module academy.payments.repository
def insert_payment(
    *,
    order_id: str,
    user_id: str,
    amount: float,
    currency: str,
    provider: str,
    provider_payment_id: str,
    status: str = "pending",
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[dict]:
    """
    Insère une ligne payments si aucune n'existe pour provider_payment_id.
    - upsert(ignore_duplicates=True) sur la contrainte unique: écriture conditionnelle atomique
    - Retourne la ligne insérée, {} si une ligne existait déjà, None en cas d'erreur.
    """
    _check(provider=provider, status=status)
    row = {
        "order_id": order_id,
        "user_id": user_id,
        "amount": amount,
        "currency": (currency or "USD").upper(),
        "provider": provider,
        "provider_payment_id": provider_payment_id,
        "status": status,
        "metadata": metadata or {},
    }
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("payments")
            .upsert(row, on_conflict="provider_payment_id", ignore_duplicates=True)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else {}
    except Exception:
        logger.exception(
            "payments.repository.insert_payment failed order_id=%s provider=%s ref=%s",
            order_id, provider, provider_payment_id,
        )
        return None

def get_payment_by_provider_id(provider_payment_id: str, provider: Optional[str] = None) -> Optional[dict]:
    if not provider_payment_id:
        return None
    try:
        query = (
            supabase_client.get_service_supabase()
            .table("payments")
            .select("*")
            .eq("provider_payment_id", provider_payment_id)
        )
        if provider:
            query = query.eq("provider", provider)
        res = query.limit(1).execute()
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("payments.repository.get_payment_by_provider_id failed ref=%s", provider_payment_id)
        return None

def update_payment(payment_id: str, changes: Dict[str, Any]) -> bool:
    """Met à jour une ligne payments par id (status, metadata...). False si l'écriture échoue."""
    _check(status=changes.get("status"))
    data = dict(changes)
    data["updated_at"] = datetime.now(timezone.utc).isoformat()
    try:
        (
            supabase_client.get_service_supabase()
            .table("payments")
            .update(data)
            .eq("id", payment_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("payments.repository.update_payment failed id=%s", payment_id)
        return False

def get_payment_by_order(order_id: str, provider: str) -> Optional[dict]:
    """Ligne payments d'une commande pour un fournisseur (la plus ancienne), None si absente."""
    if not order_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("payments")
            .select("*")
            .eq("order_id", order_id)
            .eq("provider", provider)
            .order("created_at")
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("payments.repository.get_payment_by_order failed order_id=%s provider=%s", order_id, provider)
        return None
