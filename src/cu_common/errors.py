"""Unified error codes and custom exceptions.

Every failure surfaced to a caller carries a stable string code plus a
human-readable message. Only `insufficient_credits` is treated as a distinct
UI branch (top-up prompt); everything else renders as a generic failure.

Errors marked "logged only" are never returned to the caller.
"""

from typing import Any


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- Caller errors (no side effects) ---

class ValidationError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__("validation_error", message, 400)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Missing or invalid access token.") -> None:
        super().__init__("unauthorized", message, 401)


class AuthorizationError(AppError):
    def __init__(self, message: str = "Not allowed.") -> None:
        super().__init__("forbidden", message, 403)


# --- Pricing ---

class PricingUnavailableError(AppError):
    def __init__(self, message: str = "Unlock pricing is not configured.") -> None:
        super().__init__("pricing_unavailable", message, 400)


# --- Wallet ---

class InsufficientCreditsError(AppError):
    def __init__(
        self,
        required: Any,
        available: Any,
        message: str = "Insufficient credits to unlock contacts.",
    ) -> None:
        super().__init__("insufficient_credits", message, 400)
        self.required = required
        self.available = available


class WalletNotFoundError(AppError):
    def __init__(self, operator_id: Any) -> None:
        super().__init__(
            "wallet_not_found",
            "No wallet found for the operator. Please add credits first.",
            400,
        )
        self.operator_id = operator_id


# --- Unlock ---

class UnlockInProgressError(AppError):
    def __init__(self) -> None:
        super().__init__(
            "unlock_in_progress",
            "Another unlock for this athlete is in progress. Retry shortly.",
            409,
        )


# --- Storage ---

class SchemaUnavailableError(AppError):
    """No candidate table/column combination is usable. Grant writes degrade instead."""

    def __init__(self, entity: str) -> None:
        super().__init__("schema_unavailable", f"No usable storage found for {entity}", 503)
        self.entity = entity


class StoreFailure(AppError):
    def __init__(self, operation: str, detail: str | None = None) -> None:
        message = f"{operation} failed" if not detail else f"{operation} failed: {detail}"
        super().__init__("store_failure", message, 500)
        self.operation = operation


class StoreTimeoutError(StoreFailure):
    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(operation, f"timed out after {timeout_seconds}s")
        self.code = "store_timeout"
        self.http_status = 504
        self.timeout_seconds = timeout_seconds


class UnsupportedTransactionKindError(StoreFailure):
    def __init__(self, kinds: tuple[str, ...]) -> None:
        super().__init__(
            "Wallet transaction logging",
            f"none of the transaction kinds {', '.join(kinds)} is accepted",
        )
        self.kinds = kinds


# --- Logged only ---

class NotificationError(AppError):
    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__("notification_failed", f"Notification dispatch failed: {detail}", 502)
        self.status_code = status_code


class CompensationFailure(AppError):
    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__("compensation_failed", f"Compensation step '{step}' failed: {cause}", 500)
        self.step = step
        self.cause = cause
