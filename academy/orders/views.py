from typing import Any, Dict
from fastapi import APIRouter, Depends

from academy.utils.security import require_user
from academy.orders import repository as orders_repo

router = APIRouter(prefix="/api/orders", tags=["Orders API"])

@router.get("")
def list_my_orders(user: Dict[str, Any] = Depends(require_user)):
    """Historique des commandes de l'utilisateur connecté (50 plus récentes)."""
    return {"orders": orders_repo.list_user_orders(user["id"])}
