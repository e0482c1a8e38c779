from fastapi import APIRouter
from tripo.api.v1.routes.rides import router as rides_router
from tripo.api.v1.routes.bookings import router as bookings_router
from tripo.api.v1.routes.payments import router as payments_router
from tripo.api.v1.routes.financial import router as financial_router
from tripo.api.v1.routes.ops import router as ops_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(rides_router)
api_router.include_router(bookings_router)
api_router.include_router(payments_router)
api_router.include_router(financial_router)
api_router.include_router(ops_router)
