from typing import Any, Dict
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from academy.utils.security import require_user
from academy.utils.rate_limit import optional_rate_limit
from academy.videos import service as videos_service

router = APIRouter(prefix="/api/videos", tags=["Videos API"])

class ProgressBody(BaseModel):
    progress_seconds: float = Field(alias="progressSeconds", ge=0)
    completed: bool = False

@router.get("/{video_id}", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def stream_video(video_id: str, user: Dict[str, Any] = Depends(require_user)):
    """URL Cloudinary signée (1 h) pour une leçon achetée ou en aperçu."""
    return videos_service.stream_video(user["id"], video_id)

@router.post("/{video_id}")
def save_progress(video_id: str, body: ProgressBody, user: Dict[str, Any] = Depends(require_user)):
    return videos_service.save_progress(
        user["id"],
        video_id,
        progress_seconds=body.progress_seconds,
        completed=body.completed,
    )
