"""
Error kinds raised by the engine
"""
from typing import Any, Optional


class HotelOpsError(Exception):
    """Base class for all engine errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HotelOpsError, ValueError):
    """Malformed or out-of-range input (bad dates, non-positive amounts, duplicate names)"""


class NotFoundError(HotelOpsError, LookupError):
    """A referenced id does not exist"""

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(message or f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class StateError(HotelOpsError):
    """Business-rule violation against the current status"""
