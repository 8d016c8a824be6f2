"""
Accès aux données des téléchargements de bots (tables download_tokens, analytics_events).
"""
from typing import Any, Dict, Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def insert_download_token(row: Dict[str, Any]) -> Optional[dict]:
    try:
        res = supabase_client.get_service_supabase().table("download_tokens").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else dict(row)
    except Exception:
        logger.exception("downloads.repository.insert_download_token failed product_id=%s", row.get("product_id"))
        return None

def get_download_token(token: str, product_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("download_tokens")
            .select("*")
            .eq("token", token)
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("downloads.repository.get_download_token failed product_id=%s", product_id)
        return None

def set_download_count(token: str, count: int) -> bool:
    try:
        supabase_client.get_service_supabase().table("download_tokens").update({"download_count": count}).eq("token", token).execute()
        return True
    except Exception:
        logger.exception("downloads.repository.set_download_count failed")
        return False

def insert_analytics_event(user_id: str, event_type: str, event_data: Dict[str, Any]) -> bool:
    try:
        supabase_client.get_service_supabase().table("analytics_events").insert({
            "user_id": user_id,
            "event_type": event_type,
            "event_data": event_data,
        }).execute()
        return True
    except Exception:
        logger.exception("downloads.repository.insert_analytics_event failed event_type=%s", event_type)
        return False
