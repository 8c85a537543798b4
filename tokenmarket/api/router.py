from fastapi import APIRouter
from tokenmarket.api.v1.health import router as health_router
from tokenmarket.api.v1.users import router as users_router
from tokenmarket.api.v1.listings import router as listings_router
from tokenmarket.api.v1.transactions import router as transactions_router
from tokenmarket.api.v1.uploads import router as uploads_router


api_router = APIRouter()
api_router.include_router(health_router, prefix="/v1", tags=["health"])
api_router.include_router(users_router, prefix="/v1", tags=["users"])
api_router.include_router(listings_router, prefix="/v1", tags=["listings"])
api_router.include_router(transactions_router, prefix="/v1", tags=["transactions"])
api_router.include_router(uploads_router, prefix="/v1", tags=["uploads"])
