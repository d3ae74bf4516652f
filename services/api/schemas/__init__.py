"""
Pydantic schemas for API request/response validation.
"""
from .selection import (
    DeliveryDetails,
    DeliveryResponse,
    SelectionRequest,
    ViewerOut,
    ViewerPageOut,
)

__all__ = [
    "DeliveryDetails",
    "DeliveryResponse",
    "SelectionRequest",
    "ViewerOut",
    "ViewerPageOut",
]
