from typing import Any, Dict
from .repository import get_user_from_access_token as _repo_get_user_from_token

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise l'utilisateur Supabase Auth: {id, email, token}."""
    raw = _repo_get_user_from_token(access_token)
    return {"id": raw.get("id"), "email": raw.get("email"), "token": access_token}
