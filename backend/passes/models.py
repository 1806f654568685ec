from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field

class BookPassRequest(BaseModel):
    """Corps de POST /api/v1/passes/book (clés camelCase du front)."""
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId", min_length=1)
    pass_type: Optional[str] = Field(None, alias="passType")
    friends: List[Any] = Field(default_factory=list)

class EventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId", min_length=1)

class RetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_order_id: str = Field(..., alias="merchantOrderId", min_length=1)
