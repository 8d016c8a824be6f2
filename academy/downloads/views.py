from typing import Any, Dict
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from academy.utils.security import require_user
from academy.utils.rate_limit import optional_rate_limit
from academy.downloads import service as downloads_service

router = APIRouter(prefix="/api/downloads", tags=["Downloads API"])

class DownloadBody(BaseModel):
    token: str = Field(min_length=1)

@router.get("/{product_id}", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def request_download(product_id: str, user: Dict[str, Any] = Depends(require_user)):
    """Jeton de téléchargement (24 h, 3 essais) pour un bot acheté."""
    return downloads_service.issue_download(user["id"], product_id)

@router.post("/{product_id}", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def consume_download(product_id: str, body: DownloadBody):
    """Consomme un jeton et renvoie l'URL de téléchargement."""
    return downloads_service.consume_download(body.token, product_id)
