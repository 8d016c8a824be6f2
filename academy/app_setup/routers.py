"""
Registre central des routers (API + health).
"""
from fastapi import FastAPI
from academy.payments import views as payments_views
from academy.orders import views as orders_views
from academy.users import views as users_views
from academy.downloads import views as downloads_views
from academy.videos import views as videos_views
from academy.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API
    app.include_router(payments_views.router)
    app.include_router(payments_views.webhooks_router)
    app.include_router(orders_views.router)
    app.include_router(users_views.router)
    app.include_router(downloads_views.router)
    app.include_router(videos_views.router)
    # Health & monitoring
    app.include_router(health_router)
