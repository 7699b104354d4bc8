"""Response envelope shared by every endpoint."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


class SuccessResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None


class ErrorDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    message: str
    correlation_id: str = Field(..., alias="correlationId")
    retry_after: Optional[int] = Field(None, alias="retryAfter")
    details: Optional[list[dict[str, Any]]] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail

    def to_content(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
