"""Health check route."""

from fastapi import APIRouter

from ...app import Application


def create_health_router(app: Application) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health() -> dict:
        return {"status": "ok", "region": app.settings.region}

    return router
