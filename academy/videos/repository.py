"""
Accès aux données des vidéos de cours (tables course_lessons, video_progress).
"""
from typing import Any, Dict, Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def get_lesson(lesson_id: str) -> Optional[dict]:
    """Leçon {id, course_id, title, cloudinary_public_id, is_preview, ...} ou None."""
    if not lesson_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("course_lessons")
            .select("*")
            .eq("id", lesson_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("videos.repository.get_lesson failed id=%s", lesson_id)
        return None

def upsert_progress(row: Dict[str, Any]) -> Optional[dict]:
    # une ligne par (user_id, lesson_id)
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("video_progress")
            .upsert(row, on_conflict="user_id,lesson_id")
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else dict(row)
    except Exception:
        logger.exception("videos.repository.upsert_progress failed lesson_id=%s", row.get("lesson_id"))
        return None
