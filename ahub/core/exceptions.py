from fastapi import HTTPException, status
from typing import Optional, Dict, Any

class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )

class AuthorizationError(BaseAPIException):
    """Authorization related errors"""
    def __init__(self, message: str = "Access forbidden", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="AUTH_002",
            message=message,
            details=details
        )

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class BusinessLogicError(BaseAPIException):
    """Business logic errors"""
    def __init__(self, error_code: str, message: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=error_code,
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class EventNotFoundError(BaseAPIException):
    """Unknown event"""
    def __init__(self, event_id: Any):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="EVENT_NOT_FOUND",
            message=f"Event {event_id} not found",
            details={"event_id": event_id}
        )

class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )

# ---------------------------------------------------------------------------
# Points / stock business rules
# ---------------------------------------------------------------------------

class InsufficientBalanceError(BusinessLogicError):
    """Insufficient balance errors"""
    def __init__(self, required: int, available: int):
        super().__init__(
            error_code="BALANCE_001",
            message=f"Insufficient balance. Required: {required}, Available: {available}",
            details={"required": required, "available": available}
        )

class InsufficientStockError(BusinessLogicError):
    """Requested quantity exceeds available stock"""
    def __init__(self, item_id: Any, item_name: str, requested: int, available: int):
        super().__init__(
            error_code="STOCK_001",
            message=f"Insufficient stock for '{item_name}'. Available: {available}, requested: {requested}",
            details={
                "item_id": item_id,
                "item_name": item_name,
                "requested": requested,
                "available": available,
            }
        )

class NegativeStockError(BusinessLogicError):
    """Stock adjustment would drive the counter below zero"""
    def __init__(self, item_id: Any, current: int, delta: int):
        super().__init__(
            error_code="STOCK_002",
            message=f"Stock cannot be negative. Current: {current}, adjustment: {delta}",
            details={"item_id": item_id, "current": current, "delta": delta}
        )

class ItemUnavailableError(BusinessLogicError):
    """Item is inactive or its offer has ended"""
    def __init__(self, item_id: Any, item_name: str, reason: str):
        super().__init__(
            error_code="ITEM_UNAVAILABLE",
            message=f"'{item_name}' is not available ({reason})",
            details={"item_id": item_id, "item_name": item_name, "reason": reason}
        )

class OrderNotPayableError(BusinessLogicError):
    """Kyosk order is no longer pending"""
    def __init__(self, order_id: Any, order_status: str):
        super().__init__(
            error_code="ORDER_NOT_PAYABLE",
            message=f"Order {order_id} is {order_status}",
            details={"order_id": order_id, "status": order_status}
        )

# ---------------------------------------------------------------------------
# Event check-in rules
# ---------------------------------------------------------------------------

class EventNotActiveError(BusinessLogicError):
    """Event is outside its check-in window"""
    REASONS = {
        "not_started": "Event has not started yet",
        "ended": "Event has ended",
        "inactive": "Event is not active",
    }

    def __init__(self, event_id: Any, reason: str):
        self.reason = reason
        super().__init__(
            error_code="EVENT_NOT_ACTIVE",
            message=self.REASONS.get(reason, "Event is not active"),
            details={"event_id": event_id, "reason": reason}
        )

class CheckinLimitReachedError(BusinessLogicError):
    def __init__(self, event_id: Any, limit: int):
        super().__init__(
            error_code="CHECKIN_LIMIT",
            message=f"Check-in limit reached ({limit})",
            details={"event_id": event_id, "limit": limit}
        )

class TooSoonError(BusinessLogicError):
    def __init__(self, event_id: Any, wait_seconds: int):
        self.wait_seconds = wait_seconds
        super().__init__(
            error_code="CHECKIN_TOO_SOON",
            message=f"Wait {wait_seconds} seconds before the next check-in",
            details={"event_id": event_id, "wait_seconds": wait_seconds}
        )

# ---------------------------------------------------------------------------
# QR token errors (rescan 유도, 보안 로그로 분리)
# ---------------------------------------------------------------------------

class TokenError(BusinessLogicError):
    """Base class for QR token failures"""
    pass

class InvalidTokenError(TokenError):
    def __init__(self, message: str = "Invalid QR code", details: Optional[Dict] = None):
        super().__init__(error_code="TOKEN_INVALID", message=message, details=details)

class ExpiredTokenError(TokenError):
    def __init__(self, message: str = "QR code expired", details: Optional[Dict] = None):
        super().__init__(error_code="TOKEN_EXPIRED", message=message, details=details)

class StaleTokenError(TokenError):
    def __init__(
        self,
        message: str = "QR code was superseded by a newer one",
        details: Optional[Dict] = None,
        error_code: str = "TOKEN_STALE",
    ):
        super().__init__(error_code=error_code, message=message, details=details)

class TokenNoLongerValidError(StaleTokenError):
    """The display rotated its QR between preview and confirmation"""
    def __init__(self, message: str = "QR code is no longer valid, please scan again", details: Optional[Dict] = None):
        super().__init__(message=message, details=details, error_code="TOKEN_NO_LONGER_VALID")
