# academy.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, MTN Mobile Money)
- Sécurité cookies, CORS/hosts
- Fournit l'URL publique du site pour les redirections du checkout
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

# Supabase: URL et clés (anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

# Stripe: clé secrète, secret webhook, devise par défaut des PaymentIntents
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_DEFAULT_CURRENCY = _clean_env(os.getenv("STRIPE_DEFAULT_CURRENCY") or "usd").lower()

# MTN Mobile Money (collection API)
MTN_MOMO_SUBSCRIPTION_KEY = _clean_env(os.getenv("MTN_MOMO_SUBSCRIPTION_KEY") or "")
MTN_MOMO_API_USER = _clean_env(os.getenv("MTN_MOMO_API_USER") or "")
MTN_MOMO_API_KEY = _clean_env(os.getenv("MTN_MOMO_API_KEY") or "")
MTN_MOMO_ENVIRONMENT = _clean_env(os.getenv("MTN_MOMO_ENVIRONMENT") or "sandbox").lower()
MTN_MOMO_CALLBACK_URL = _clean_env(os.getenv("MTN_MOMO_CALLBACK_URL") or "")
# Le sandbox MTN n'accepte que l'EUR; en production, mettre la devise locale (ex: UGX)
MTN_MOMO_CURRENCY = _clean_env(os.getenv("MTN_MOMO_CURRENCY") or "EUR").upper()
MTN_MOMO_TIMEOUT = float(os.getenv("MTN_MOMO_TIMEOUT", "15"))

# Cloudinary: vidéos des cours (URLs signées, type authenticated)
CLOUDINARY_CLOUD_NAME = _clean_env(os.getenv("CLOUDINARY_CLOUD_NAME") or "")
CLOUDINARY_API_KEY = _clean_env(os.getenv("CLOUDINARY_API_KEY") or "")
CLOUDINARY_API_SECRET = _clean_env(os.getenv("CLOUDINARY_API_SECRET") or "")

# URL publique du site (redirections success/cancel du checkout Stripe)
APP_URL = _clean_env(os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL") or "http://localhost:3000").rstrip("/")
