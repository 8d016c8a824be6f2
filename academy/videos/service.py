"""
Lecture des vidéos de cours.
- URL signée (1 h) si la leçon est en aperçu ou si l'accès au cours est actif et non expiré
- Progression de lecture: une ligne video_progress par (utilisateur, leçon)
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from fastapi import HTTPException

from academy.access import repository as access_repo
from academy.access.service import access_is_current
from academy.videos import repository as videos_repo
from academy.videos import cloudinary_client

logger = logging.getLogger(__name__)

VIDEO_URL_TTL = timedelta(hours=1)

def _load_lesson(lesson_id: str) -> Dict[str, Any]:
    lesson = videos_repo.get_lesson(lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="Video not found")
    return lesson

def _require_course_access(user_id: str, lesson: Dict[str, Any], now: datetime) -> None:
    access = access_repo.get_access(user_id, str(lesson.get("course_id")), active_only=True)
    if not access:
        raise HTTPException(status_code=403, detail="Access denied. Please purchase this course first.")
    if not access_is_current(access, now):
        raise HTTPException(status_code=403, detail="Your access to this content has expired.")

def stream_video(user_id: str, lesson_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    lesson = _load_lesson(lesson_id)
    if not lesson.get("is_preview"):
        _require_course_access(user_id, lesson, now)

    public_id = lesson.get("cloudinary_public_id")
    if not public_id:
        raise HTTPException(status_code=404, detail="Video not available")
    try:
        url = cloudinary_client.signed_video_url(public_id)
    except cloudinary_client.VideoUrlError:
        raise HTTPException(status_code=500, detail="Failed to generate video URL")
    return {"url": url, "expiresIn": int(VIDEO_URL_TTL.total_seconds())}

def save_progress(
    user_id: str,
    lesson_id: str,
    *,
    progress_seconds: float,
    completed: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Enregistre la position de lecture; accès au cours exigé, même pour une leçon en aperçu."""
    now = now or datetime.now(timezone.utc)
    lesson = _load_lesson(lesson_id)
    _require_course_access(user_id, lesson, now)

    row = videos_repo.upsert_progress({
        "user_id": user_id,
        "lesson_id": lesson_id,
        "progress_seconds": progress_seconds,
        "completed": bool(completed),
        "last_watched_at": now.isoformat(),
    })
    if row is None:
        raise HTTPException(status_code=500, detail="Failed to update progress")
    logger.info("video progress user_id=%s lesson_id=%s completed=%s", user_id, lesson_id, bool(completed))
    return {"success": True, "data": row}
