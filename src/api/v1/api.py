from fastapi import APIRouter

from .ai import router as ai_router
from .feedback import router as feedback_router
from .health import router as health_router


api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(ai_router)
api_router.include_router(feedback_router)
