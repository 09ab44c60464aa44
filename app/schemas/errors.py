from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    error: str
    message: str
    attempts_left: Optional[int] = None
    retry_after: Optional[int] = None
