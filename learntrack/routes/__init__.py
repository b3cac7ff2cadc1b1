"""
learntrack/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from learntrack.routes import progress, proctoring

router = APIRouter()

router.include_router(progress.router)
router.include_router(proctoring.router)
