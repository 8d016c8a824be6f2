"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production: `uvicorn academy.asgi:app` (ou gunicorn -k uvicorn.workers.UvicornWorker).
- Toute la configuration FastAPI est centralisée dans academy.app_setup.factory.
"""

from academy.app import app
