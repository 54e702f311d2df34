"""API response schemas"""
from typing import Any, Dict, List

from pydantic import BaseModel

from models.base import CamelModel
from models.message import ChatMessage


class HistoryResponse(CamelModel):
    conversation_id: str
    messages: List[ChatMessage]


class RecordListResponse(BaseModel):
    items: List[Dict[str, Any]]
    count: int
