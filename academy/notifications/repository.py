from typing import Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

PRODUCT_PAGES = {"course": "/courses", "signal": "/signals", "bot": "/bots"}

def insert_notification(*, user_id: str, title: str, message: str, link: Optional[str] = None, type_: str = "payment") -> bool:
    """Notification in-app (table notifications), best-effort: False en cas d'échec."""
    try:
        (
            supabase_client.get_service_supabase()
            .table("notifications")
            .insert({"user_id": user_id, "type": type_, "title": title, "message": message, "link": link})
            .execute()
        )
        return True
    except Exception:
        logger.exception("notifications.repository.insert_notification failed user_id=%s", user_id)
        return False

def product_link(product_id: str, product_type: Optional[str]) -> str:
    return f"{PRODUCT_PAGES.get(product_type or '', '/courses')}/{product_id}"
