from typing import Any, Dict, Optional
import logging
from fastapi import HTTPException
from academy.users import repository as users_repo

logger = logging.getLogger(__name__)

def register_user(*, user_id: str, email: str, first_name: Optional[str] = None, last_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Enregistre le profil applicatif d'un compte Supabase Auth déjà créé:
    - ligne users (rôle customer): échec -> 500
    - ligne user_profiles: échec journalisé, le compte reste utilisable
    """
    if not users_repo.insert_user(user_id, email.strip()):
        raise HTTPException(status_code=500, detail="Failed to create user record")
    if not users_repo.insert_user_profile(user_id, first_name, last_name):
        logger.warning("user profile not created user_id=%s", user_id)
    return {"success": True}
