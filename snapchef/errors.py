from __future__ import annotations

from enum import Enum


class SnapChefError(Exception):
    code = "error"
    retryable = False

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ValidationError(SnapChefError, ValueError):
    code = "validation"


class InvalidImageError(ValidationError):
    code = "validation.invalid-image"


class CacheError(SnapChefError):
    code = "cache"


class DisposedError(SnapChefError):
    code = "disposed"

    def __init__(self, component: str = "service") -> None:
        super().__init__(f"{component} disposed")


class NetworkErrorKind(str, Enum):
    NO_CONNECTION = "no-connection"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate-limited"
    SERVER_ERROR = "server-error"
    AUTH_FAILURE = "auth-failure"
    BAD_REQUEST = "bad-request"


class NetworkError(SnapChefError):
    def __init__(
        self,
        message: str,
        kind: NetworkErrorKind,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.kind = kind
        self.retryable = retryable
        self.status_code = status_code

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"network.{self.kind.value}"

    @classmethod
    def no_connection(
        cls, *, retryable: bool = False, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            "No internet connection. Please check your network settings.",
            NetworkErrorKind.NO_CONNECTION,
            retryable=retryable,
            cause=cause,
        )

    @classmethod
    def timeout(cls, cause: BaseException | None = None) -> NetworkError:
        return cls(
            "Request timed out. Please try again.",
            NetworkErrorKind.TIMEOUT,
            retryable=True,
            cause=cause,
        )

    @classmethod
    def rate_limited(cls, cause: BaseException | None = None) -> NetworkError:
        return cls(
            "Too many requests. Please wait a moment before trying again.",
            NetworkErrorKind.RATE_LIMITED,
            status_code=429,
            cause=cause,
        )

    @classmethod
    def server_error(
        cls, status_code: int | None = None, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            "Server error occurred. Please try again later.",
            NetworkErrorKind.SERVER_ERROR,
            retryable=True,
            status_code=status_code,
            cause=cause,
        )

    @classmethod
    def auth_failure(
        cls, status_code: int | None = 401, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            "Authentication failed. Please check your API key.",
            NetworkErrorKind.AUTH_FAILURE,
            status_code=status_code,
            cause=cause,
        )

    @classmethod
    def bad_request(
        cls, status_code: int | None = None, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            f"Server rejected the request (status {status_code}).",
            NetworkErrorKind.BAD_REQUEST,
            status_code=status_code,
            cause=cause,
        )


class ProcessingErrorKind(str, Enum):
    INVALID_IMAGE = "invalid-image"
    NO_FOOD_DETECTED = "no-food-detected"
    SERVICE_FAILURE = "service-failure"


class ProcessingError(SnapChefError):
    def __init__(
        self,
        message: str,
        kind: ProcessingErrorKind,
        *,
        details: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.kind = kind
        self.details = details

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"processing.{self.kind.value}"

    @classmethod
    def invalid_image(
        cls, details: str | None = None, cause: BaseException | None = None
    ) -> ProcessingError:
        return cls(
            "Invalid image format. Please capture a new photo.",
            ProcessingErrorKind.INVALID_IMAGE,
            details=details,
            cause=cause,
        )

    @classmethod
    def no_food_detected(cls) -> ProcessingError:
        return cls(
            "No food items detected in the image. Please try a clearer photo.",
            ProcessingErrorKind.NO_FOOD_DETECTED,
        )

    @classmethod
    def service_failure(
        cls, details: str | None = None, cause: BaseException | None = None
    ) -> ProcessingError:
        message = "Failed to process the AI service response."
        if details:
            message = f"{message} {details}"
        return cls(
            message,
            ProcessingErrorKind.SERVICE_FAILURE,
            details=details,
            cause=cause,
        )
