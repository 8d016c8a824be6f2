"""
Adaptateur Cloudinary: URLs de lecture signées pour les vidéos de cours.
Les vidéos sont déposées en type 'authenticated': sans signature, Cloudinary refuse la lecture.
"""
import logging

import cloudinary
import cloudinary.utils
from fastapi import HTTPException

from academy.config import CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET

logger = logging.getLogger(__name__)

class VideoUrlError(RuntimeError):
    """Le SDK n'a pas pu produire d'URL signée."""

def require_cloudinary():
    """
    Configure le SDK avec CLOUDINARY_CLOUD_NAME / API_KEY / API_SECRET.
    Soulève HTTPException(500) si la configuration est incomplète.
    """
    if not (CLOUDINARY_CLOUD_NAME and CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET):
        raise HTTPException(status_code=500, detail="Configuration Cloudinary manquante")
    cloudinary.config(
        cloud_name=CLOUDINARY_CLOUD_NAME,
        api_key=CLOUDINARY_API_KEY,
        api_secret=CLOUDINARY_API_SECRET,
        secure=True,
    )
    return cloudinary

def signed_video_url(public_id: str) -> str:
    require_cloudinary()
    try:
        url, _ = cloudinary.utils.cloudinary_url(
            public_id,
            resource_type="video",
            type="authenticated",
            sign_url=True,
            secure=True,
        )
    except Exception as e:
        logger.exception("cloudinary signed url failed public_id=%s", public_id)
        raise VideoUrlError(str(e)) from e
    return url
