from fastapi import APIRouter

from screener.routers import screening

# Routers are aggregated here; main.py only imports this hub.
api_router = APIRouter()

api_router.include_router(screening.router, prefix="/screening", tags=["Screening"])
