"""Couche d'accès aux données (Supabase) pour le domaine Utilisateurs (tables users, user_profiles).
Écritures via la clé de service (création de compte côté serveur, hors RLS).
"""
from typing import Optional
import logging
import academy.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def insert_user(user_id: str, email: str, role: str = "customer") -> bool:
    try:
        supabase_client.get_service_supabase().table("users").insert({"id": user_id, "email": email, "role": role}).execute()
        return True
    except Exception:
        logger.exception("users.repository.insert_user failed user_id=%s", user_id)
        return False

def insert_user_profile(user_id: str, first_name: Optional[str] = None, last_name: Optional[str] = None) -> bool:
    try:
        supabase_client.get_service_supabase().table("user_profiles").insert({
            "user_id": user_id,
            "first_name": first_name or "",
            "last_name": last_name or "",
        }).execute()
        return True
    except Exception:
        logger.exception("users.repository.insert_user_profile failed user_id=%s", user_id)
        return False
