from fastapi import APIRouter

from .credits import router as credits_router
from .features import router as features_router
from .purchases import router as purchases_router
from .records import router as records_router

api_router = APIRouter()
# prefix는 router 파일 내부에서 정의되어 있음
api_router.include_router(credits_router)
api_router.include_router(purchases_router)
api_router.include_router(records_router)
api_router.include_router(features_router)
