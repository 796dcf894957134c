"""
foodfight/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from foodfight.routes import food_fights

router = APIRouter()

router.include_router(food_fights.router)
