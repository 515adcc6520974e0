"""
swoon.errors — Engine Error Taxonomy
======================================

Every failure the engine reports to a caller is one of the classes below.
The taxonomy is closed: services never raise bare ``ValueError`` or
``HTTPException`` for business outcomes, and the API layer maps each class
to an HTTP status through a single exception handler
(:func:`swoon.api.main.engine_error_handler`).

Four families:

* **validation** — the request itself is malformed (bad amount, disabled
  tier, message too long, ...).
* **business rule** — the request is well formed but the current state
  forbids it (insufficient balance, already banned, ...).
* **concurrency** — a competing writer won and retries ran out.
* **infrastructure** — storage is unreachable or timed out.

Only the last two are ``retryable``.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for every error the engine reports."""

    code: str = "engine_error"
    status_code: int = 400
    retryable: bool = False
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class ValidationError(EngineError):
    code = "validation_error"
    status_code = 422


class InvalidAmount(ValidationError):
    code = "invalid_amount"
    default_message = "Amount must be positive"


class InvalidDuration(ValidationError):
    code = "invalid_duration"
    default_message = "Duration is out of range"


class InvalidGiftMessage(ValidationError):
    code = "invalid_gift_message"
    default_message = "Gift message is not allowed"


class GiftTierDisabled(ValidationError):
    code = "gift_tier_disabled"
    default_message = "This gift is currently unavailable"


class InvalidRecipient(ValidationError):
    code = "invalid_recipient"
    default_message = "Invalid recipient"


class InvalidReferralCode(ValidationError):
    code = "invalid_referral_code"
    default_message = "Invalid referral code"


class PriceUnavailable(ValidationError):
    code = "price_unavailable"
    default_message = "No active price for this item"


class InvalidPatch(ValidationError):
    code = "invalid_patch"
    default_message = "Invalid update"


# ---------------------------------------------------------------------------
# Business rule
# ---------------------------------------------------------------------------
class BusinessRuleError(EngineError):
    code = "business_rule"
    status_code = 409


class AccountNotFound(BusinessRuleError):
    code = "account_not_found"
    status_code = 404
    default_message = "Account not found"


class InsufficientBalance(BusinessRuleError):
    code = "insufficient_balance"
    status_code = 402
    default_message = "Insufficient balance"


class GiftNotFound(BusinessRuleError):
    code = "gift_not_found"
    status_code = 404
    default_message = "Gift not found"


class NotReceiver(BusinessRuleError):
    code = "not_receiver"
    status_code = 403
    default_message = "Only the receiver can act on this gift"


class AlreadyApplied(BusinessRuleError):
    code = "already_applied"
    default_message = "A referral code has already been rewarded for this account"


class SelfReferral(BusinessRuleError):
    code = "self_referral"
    status_code = 422
    default_message = "You cannot use your own referral code"


class ProfileAlreadyCompleted(BusinessRuleError):
    code = "profile_already_completed"
    default_message = "Referral codes must be applied before profile completion"


class AlreadyBanned(BusinessRuleError):
    code = "already_banned"
    default_message = "Account is already banned"


class ReportNotFound(BusinessRuleError):
    code = "report_not_found"
    status_code = 404
    default_message = "Report not found"


class ReportNotPending(BusinessRuleError):
    code = "report_not_pending"
    default_message = "Report has already been reviewed"


class DuplicateReport(BusinessRuleError):
    code = "duplicate_report"
    default_message = "You already have a pending report against this account"


# ---------------------------------------------------------------------------
# Concurrency / infrastructure
# ---------------------------------------------------------------------------
class ConcurrencyConflict(EngineError):
    code = "concurrency_conflict"
    status_code = 409
    retryable = True
    default_message = "A concurrent update won; please retry"


class StorageUnavailable(EngineError):
    code = "storage_unavailable"
    status_code = 503
    retryable = True
    default_message = "Storage is temporarily unavailable"
