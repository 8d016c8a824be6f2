"""
Téléchargement des bots de trading.
- Émission d'un jeton (24 h, 3 téléchargements max) pour un acheteur dont l'accès est en cours
- Consommation du jeton: incrémente le compteur et renvoie l'URL du binaire
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging
import secrets

from fastapi import HTTPException

from academy.catalog import repository as catalog_repo
from academy.access import repository as access_repo
from academy.access.service import access_is_current, parse_ts
from academy.downloads import repository as downloads_repo

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(hours=24)
MAX_DOWNLOADS = 3

def issue_download(user_id: str, product_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    product = catalog_repo.get_product(product_id)
    if not product or product.get("type") != "bot":
        raise HTTPException(status_code=404, detail="Product not found or not a bot")

    access = access_repo.get_access(user_id, product_id, active_only=True)
    if not access:
        raise HTTPException(status_code=403, detail="Access denied. Please purchase this bot first.")
    if not access_is_current(access, now):
        raise HTTPException(status_code=403, detail="Your access to this content has expired.")

    bot = catalog_repo.get_trading_bot(product_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot details not found")

    token = downloads_repo.insert_download_token({
        "token": secrets.token_urlsafe(32),
        "user_id": user_id,
        "product_id": product_id,
        "expires_at": (now + TOKEN_TTL).isoformat(),
        "max_downloads": MAX_DOWNLOADS,
        "download_count": 0,
    })
    if not token:
        raise HTTPException(status_code=500, detail="Failed to generate download token")

    return {
        "success": True,
        "token": token["token"],
        "productName": product.get("name"),
        "downloadUrl": bot.get("download_url"),
        "version": bot.get("version"),
        "setupInstructions": bot.get("setup_instructions"),
        "requirements": bot.get("requirements"),
        "expiresIn": int(TOKEN_TTL.total_seconds()),
        "maxDownloads": MAX_DOWNLOADS,
    }

def consume_download(token: str, product_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    data = downloads_repo.get_download_token(token, product_id)
    if not data:
        raise HTTPException(status_code=403, detail="Invalid or expired token")
    expires_at = parse_ts(data.get("expires_at"))
    if expires_at is None or expires_at < now:
        raise HTTPException(status_code=403, detail="Token has expired")

    count = int(data.get("download_count") or 0)
    max_downloads = int(data.get("max_downloads") or MAX_DOWNLOADS)
    if count >= max_downloads:
        raise HTTPException(status_code=403, detail="Download limit reached")

    bot = catalog_repo.get_trading_bot(product_id)
    if not bot or not bot.get("download_url"):
        raise HTTPException(status_code=404, detail="Download not available")

    downloads_repo.set_download_count(token, count + 1)
    downloads_repo.insert_analytics_event(
        data.get("user_id"),
        "bot_download",
        {"product_id": product_id, "download_count": count + 1},
    )
    logger.info("bot download product_id=%s user_id=%s count=%s", product_id, data.get("user_id"), count + 1)
    return {
        "success": True,
        "downloadUrl": bot["download_url"],
        "version": bot.get("version"),
        "remainingDownloads": max_downloads - count - 1,
    }
