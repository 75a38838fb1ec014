"""Error models"""

from enum import Enum
from typing import Optional
import uuid


class ErrorCode(str, Enum):
    """Error codes surfaced by the API and the pipeline stages"""
    INVALID_QUERY = "INVALID_QUERY"
    NOT_FOUND = "NOT_FOUND"
    COMPLETION_FAILED = "COMPLETION_FAILED"
    COMPLETION_TIMEOUT = "COMPLETION_TIMEOUT"
    IMAGE_FAILED = "IMAGE_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class ApplicationError(Exception):
    """Application error carrying a code, a user hint and retryability"""
    def __init__(self, code: ErrorCode, message: str, retryable: bool = False, hint: Optional[str] = None, session_id: Optional[str] = None):
        self.error_id = str(uuid.uuid4())
        self.code = code
        self.message = message
        self.retryable = retryable
        self.hint = hint
        self.session_id = session_id
        super().__init__(self.message)

    def model_dump(self):
        """Return dict representation for API responses"""
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "message": self.message,
            "hint": self.hint,
            "retryable": self.retryable,
            "session_id": self.session_id
        }

    @property
    def http_status(self) -> int:
        """Map error code to HTTP status"""
        mapping = {
            ErrorCode.INVALID_QUERY: 400,
            ErrorCode.NOT_FOUND: 404,
            ErrorCode.COMPLETION_FAILED: 502,
            ErrorCode.COMPLETION_TIMEOUT: 504,
            ErrorCode.IMAGE_FAILED: 502,
            ErrorCode.CONFIGURATION_ERROR: 500,
        }
        return mapping.get(self.code, 500)
