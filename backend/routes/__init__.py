"""
API 路由聚合
"""
from fastapi import APIRouter

from backend.routes.prior_art import router as prior_art_router
from backend.routes.health import router as health_router


router = APIRouter()

router.include_router(prior_art_router)
router.include_router(health_router)
