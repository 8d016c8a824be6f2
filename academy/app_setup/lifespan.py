"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Initialise FastAPILimiter (Redis asynchrone) avec options de test (fakeredis).
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: fallback mémoire si l'init échoue
  - RATE_LIMIT_REDIS_URL: URL Redis (défaut redis://127.0.0.1:6379/0)
"""
import os
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Configure le rate limiting et gère les fallbacks.
    - En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    - Ferme la connexion Redis et le client MTN à l'arrêt.
    """
    logger = logging.getLogger("uvicorn.error")
    redis_conn = None
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
    else:
        try:
            if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
                from fakeredis import FakeAsyncRedis  # extra [test]
                redis_conn = FakeAsyncRedis(decode_responses=True)
            else:
                redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
                redis_conn = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

            await FastAPILimiter.init(redis_conn)
            app.state.rate_limit_enabled = True
            logger.info("Rate limiting enabled")
        except Exception as e:
            redis_conn = None
            if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
                app.state.rate_limit_enabled = True
                logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
            else:
                app.state.rate_limit_enabled = False
                logger.warning("Rate limiting disabled due to init error: %s", e)

    yield

    if redis_conn is not None:
        await FastAPILimiter.close()
    from academy.payments import momo_client
    momo_client.close_momo_client()
