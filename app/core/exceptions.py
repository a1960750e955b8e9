"""
Application exceptions for centralized error handling
"""

from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Base application exception"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Authentication ===
class AuthenticationError(BaseAppException):
    """Authentication failed"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 401, "AUTHENTICATION_ERROR", details)


class AuthorizationError(BaseAppException):
    """Authenticated but not allowed"""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 403, "AUTHORIZATION_ERROR", details)


class PermissionDeniedError(BaseAppException):
    """Access to a resource denied"""

    def __init__(self, action: str, resource: str, reason: str = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message += f" - {reason}"
        details = {"action": action, "resource": resource, "reason": reason}
        super().__init__(message, 403, "PERMISSION_DENIED", details)


# === Validation ===
class ValidationError(BaseAppException):
    """Bad input shape or values"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


# === Resources ===
class NotFoundError(BaseAppException):
    """Unknown class or booking id"""

    def __init__(self, resource: str, identifier: str = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": identifier}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, "NOT_FOUND", details)


# === Business logic ===
class BusinessLogicError(BaseAppException):
    """Business rule violation"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        error_code: str = "BUSINESS_LOGIC_ERROR",
    ):
        super().__init__(message, status_code, error_code, details)


class CapacityViolationError(BusinessLogicError):
    """Capacity edit would drop below the seats already taken"""

    def __init__(self, class_id: int, requested: int, enrolled: int):
        message = (
            f"Cannot set capacity of class {class_id} to {requested}: "
            f"{enrolled} seats are already taken"
        )
        details = {"class_id": class_id, "requested": requested, "enrolled": enrolled}
        super().__init__(message, details, 409, "CAPACITY_VIOLATION")


class ClassFullError(BusinessLogicError):
    """No seats left at reservation time"""

    def __init__(self, class_id: int, capacity: int):
        message = f"Class {class_id} is full"
        details = {"class_id": class_id, "capacity": capacity}
        super().__init__(message, details, 409, "CLASS_FULL")


class AlreadyBookedError(BusinessLogicError):
    """The user already holds an active booking for the class"""

    def __init__(self, class_id: int, user_id: str, booking_id: Optional[int] = None):
        message = f"User '{user_id}' already has an active booking for class {class_id}"
        details = {"class_id": class_id, "user_id": user_id, "booking_id": booking_id}
        super().__init__(message, details, 409, "ALREADY_BOOKED")


class AlreadyCancelledError(BusinessLogicError):
    """Booking is no longer active"""

    def __init__(self, booking_id: int):
        message = f"Booking {booking_id} is already cancelled"
        details = {"booking_id": booking_id}
        super().__init__(message, details, 409, "ALREADY_CANCELLED")


class InvalidTransitionError(BusinessLogicError):
    """Illegal state change for a class or booking"""

    def __init__(
        self,
        resource: str,
        current: str,
        target: str,
        reason: Optional[str] = None,
    ):
        message = f"Cannot move {resource} from '{current}' to '{target}'"
        if reason:
            message += f" - {reason}"
        details = {"resource": resource, "current": current, "target": target}
        super().__init__(message, details, 409, "INVALID_TRANSITION")


class ClassClosedError(InvalidTransitionError):
    """Class has started, finished or was cancelled"""

    def __init__(self, class_id: int, status: str):
        BusinessLogicError.__init__(
            self,
            f"Class {class_id} is {status} and no longer accepts bookings",
            {"class_id": class_id, "status": status},
            409,
            "INVALID_TRANSITION",
        )


class StorageConflictError(BaseAppException):
    """Conditional seat update lost a race; retried by the capacity ledger"""

    def __init__(self, class_id: int, seen_version: int):
        message = f"Concurrent update on class {class_id} (version {seen_version})"
        details = {"class_id": class_id, "seen_version": seen_version}
        super().__init__(message, 409, "STORAGE_CONFLICT", details)


class UnavailableError(BaseAppException):
    """Operation could not complete; the caller may try again"""

    def __init__(
        self,
        message: str = "Service temporarily unavailable, please try again",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 503, "UNAVAILABLE", details)


# === Database ===
class DatabaseError(BaseAppException):
    """Database operation failed"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class DatabaseConnectionError(BaseAppException):
    """Cannot reach the database"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Database operation timed out"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Integrity constraint violated"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Configuration ===
class ConfigurationError(BaseAppException):
    """Invalid or missing configuration"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
