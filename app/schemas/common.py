"""
Common Pydantic schemas
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, model_validator

from app.services.store import DocumentSnapshot

class StandardResponse(BaseModel):
    """Standard API response"""
    success: bool
    message: str
    data: Optional[Any] = None

class ErrorResponse(BaseModel):
    """Error response schema"""
    success: bool = False
    message: str
    error_code: Optional[str] = None
    details: Optional[Any] = None

class DocModel(BaseModel):
    """Base for models persisted as store documents (camelCase field aliases)"""

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # explicit nulls in stored documents fall back to field defaults
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @classmethod
    def from_doc(cls, snapshot: DocumentSnapshot, **extra):
        data = snapshot.to_dict() or {}
        return cls.model_validate({**extra, **data})

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
