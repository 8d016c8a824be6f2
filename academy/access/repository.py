"""
Accès aux données pour les droits d'accès (tables user_access et subscriptions).
Unicité attendue côté base: user_access(user_id, product_id), subscriptions(user_id, plan_id).
"""
from typing import Any, Dict, Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def get_access(user_id: str, product_id: str, *, active_only: bool = False) -> Optional[dict]:
    """Ligne user_access pour (user_id, product_id), éventuellement filtrée sur is_active."""
    if not user_id or not product_id:
        return None
    try:
        query = (
            supabase_client.get_service_supabase()
            .table("user_access")
            .select("*")
            .eq("user_id", user_id)
            .eq("product_id", product_id)
        )
        if active_only:
            query = query.eq("is_active", True)
        res = query.limit(1).execute()
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("access.repository.get_access failed user_id=%s product_id=%s", user_id, product_id)
        return None

def insert_access(row: Dict[str, Any]) -> Optional[dict]:
    """
    Insère une ligne user_access.
    Retourne None en cas d'échec (ex: violation d'unicité si un autre appel vient d'insérer).
    """
    try:
        res = supabase_client.get_service_supabase().table("user_access").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else dict(row)
    except Exception:
        logger.exception(
            "access.repository.insert_access failed user_id=%s product_id=%s",
            row.get("user_id"), row.get("product_id"),
        )
        return None

def update_access(access_id: str, changes: Dict[str, Any]) -> bool:
    try:
        (
            supabase_client.get_service_supabase()
            .table("user_access")
            .update(changes)
            .eq("id", access_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("access.repository.update_access failed id=%s", access_id)
        return False

def upsert_subscription(row: Dict[str, Any]) -> bool:
    try:
        (
            supabase_client.get_service_supabase()
            .table("subscriptions")
            .upsert(row, on_conflict="user_id,plan_id")
            .execute()
        )
        return True
    except Exception:
        logger.exception(
            "access.repository.upsert_subscription failed user_id=%s plan_id=%s",
            row.get("user_id"), row.get("plan_id"),
        )
        return False
