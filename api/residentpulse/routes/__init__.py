from fastapi import APIRouter, FastAPI

from .alerts import router as alerts_router
from .jobs import router as jobs_router
from .responses import router as responses_router
from .rounds import router as rounds_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(rounds_router, tags=["rounds"])
    app.include_router(jobs_router, tags=["jobs"])
    app.include_router(alerts_router, tags=["alerts"])
    app.include_router(responses_router, tags=["responses"])


__all__ = ["include_modular_routers", "APIRouter"]
