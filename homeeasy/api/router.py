"""Mount all API routes."""

from fastapi import APIRouter

from homeeasy.api.bids import router as bids_router
from homeeasy.api.live import router as live_router
from homeeasy.api.messages import router as messages_router
from homeeasy.api.settlement import router as settlement_router
from homeeasy.api.tasks import router as tasks_router
from homeeasy.api.users import router as users_router

api_router = APIRouter()
api_router.include_router(users_router, tags=["users"])
api_router.include_router(tasks_router, tags=["tasks"])
api_router.include_router(bids_router, tags=["bids"])
api_router.include_router(messages_router, tags=["messages"])
api_router.include_router(settlement_router, tags=["settlement"])
api_router.include_router(live_router, tags=["live"])
