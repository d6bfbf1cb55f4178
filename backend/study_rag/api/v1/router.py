"""API v1 router aggregating all endpoint routers.

Chat:
  /api/v1/chat/query - cited answers, batch or SSE stream
"""

from fastapi import APIRouter

from study_rag.api.v1.endpoints import chat

api_router = APIRouter()

# -------------------------------------------------------------------------
# Question answering
# -------------------------------------------------------------------------
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
