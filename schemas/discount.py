from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional


class DiscountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    type: Literal["percentage", "fixed"] = "percentage"
    value: float = Field(gt=0)
    max_uses: Optional[int] = Field(default=None, ge=0)
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def _as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Columns hold naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class DiscountOut(BaseModel):
    id: str
    code: str
    type: str
    value: float
    is_active: bool
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    used_count: int
    created_at: datetime

    class Config:
        from_attributes = True
