"""Couche service des droits d'accès.
Rôles:
- Garde d'accès: l'utilisateur possède-t-il déjà un accès actif au produit ?
- Attribution idempotente après paiement: une seule ligne user_access par (user_id, product_id).
- Plans de signaux: date d'expiration (hebdo/mensuel) et abonnement associé.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from academy.access import repository
from academy.catalog import repository as catalog_repo

logger = logging.getLogger(__name__)

PLAN_DURATIONS = {
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

class AccessGrantError(RuntimeError):
    """L'accès n'a pas pu être enregistré (ni insertion, ni réactivation)."""

def has_active_access(user_id: str, product_id: str) -> bool:
    """Existence d'une ligne user_access active. Pas de révocation temporelle ici."""
    return repository.get_access(user_id, product_id, active_only=True) is not None

def parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

def access_is_current(access: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> bool:
    """Accès actif et non expiré (access_expires_at absent = illimité)."""
    if not access or not access.get("is_active"):
        return False
    expires_at = parse_ts(access.get("access_expires_at"))
    if expires_at is None:
        return True
    return expires_at >= (now or datetime.now(timezone.utc))

def compute_expiry(product_id: str, product_type: Optional[str], now: datetime) -> Optional[datetime]:
    """Expiration pour un plan de signaux (7 ou 30 jours); None pour cours et bots."""
    if product_type != "signal":
        return None
    plan = catalog_repo.get_signal_plan(product_id)
    duration = PLAN_DURATIONS.get(str((plan or {}).get("interval") or "").lower())
    return now + duration if duration else None

def grant_access(
    *,
    user_id: str,
    product_id: str,
    product_type: Optional[str],
    order_id: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Attribue l'accès de manière idempotente:
    - ligne existante pour la même commande (vérification rejouée): is_active repassé à true,
      expiration et abonnement inchangés
    - ligne existante d'une autre commande (nouvel achat): réactivation et nouvelle expiration
    - sinon insertion granted_by='payment'
    - insertion refusée (course avec un appel concurrent): relecture puis réactivation
    Soulève AccessGrantError si aucune des écritures n'aboutit.
    """
    now = now or datetime.now(timezone.utc)
    product_type = product_type or "course"

    existing = repository.get_access(user_id, product_id)
    if existing is None:
        expires_at = compute_expiry(product_id, product_type, now)
        row = {
            "user_id": user_id,
            "product_id": product_id,
            "product_type": product_type,
            "is_active": True,
            "granted_by": "payment",
            "order_id": order_id,
            "access_granted_at": now.isoformat(),
            "access_expires_at": expires_at.isoformat() if expires_at else None,
        }
        inserted = repository.insert_access(row)
        if inserted is not None:
            logger.info("access granted user_id=%s product_id=%s order_id=%s", user_id, product_id, order_id)
            _sync_subscription(user_id, product_id, product_type, now, expires_at)
            return inserted
        existing = repository.get_access(user_id, product_id)
        if existing is None:
            raise AccessGrantError(f"Failed to grant access to product {product_id}")

    changes: Dict[str, Any] = {"is_active": True}
    same_order = order_id is not None and str(existing.get("order_id")) == str(order_id)
    expires_at = None if same_order else compute_expiry(product_id, product_type, now)
    if not same_order:
        changes["order_id"] = order_id
        if expires_at:
            changes["access_expires_at"] = expires_at.isoformat()

    if not repository.update_access(existing["id"], changes):
        raise AccessGrantError(f"Failed to re-activate access to product {product_id}")
    logger.info("access re-activated user_id=%s product_id=%s order_id=%s replay=%s", user_id, product_id, order_id, same_order)
    _sync_subscription(user_id, product_id, product_type, now, expires_at)
    return {**existing, **changes}

def _sync_subscription(user_id: str, product_id: str, product_type: str, now: datetime, expires_at: Optional[datetime]) -> None:
    # Abonnement uniquement pour les plans de signaux à durée déterminée
    if product_type != "signal" or not expires_at:
        return
    repository.upsert_subscription({
        "user_id": user_id,
        "plan_id": product_id,
        "status": "active",
        "current_period_start": now.isoformat(),
        "current_period_end": expires_at.isoformat(),
    })
