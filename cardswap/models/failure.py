"""
Failure classification and the typed errors of the trading core.

Every validation failure in the core is raised as a subclass of
`KnownError`. The HTTP layer renders them through `ApiResponse` with the
status code the error carries. Nothing here is retried internally:
the immediate caller decides what to do next.

Taxonomy:
- NotFound: an id does not resolve
- Forbidden: the caller is not a legitimate participant
- InvalidTransition: a state machine rule was violated
- Duplicate request/invite: a uniqueness rule was violated
- Self trade/invite, NotFriends
- InsufficientOwnership: card lists are stale, re-negotiate
- RateLimited: expected steady-state outcome of the pack token bucket
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"

    # Resource failures
    NOT_FOUND = "not_found"

    # Authorization
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"

    # Constraint violations
    INVALID_TRANSITION = "invalid_transition"
    DUPLICATE_REQUEST = "duplicate_request"
    DUPLICATE_INVITE = "duplicate_invite"
    SELF_TRADE = "self_trade"
    SELF_INVITE = "self_invite"
    NOT_FRIENDS = "not_friends"
    INSUFFICIENT_OWNERSHIP = "insufficient_ownership"

    # Throttling
    RATE_LIMITED = "rate_limited"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"

    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel, Generic[T]):
    """
    Response envelope for failed operations.

    Successful endpoints return their own response models; failures are
    always wrapped so clients can switch on `failure.kind`.
    """

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (success, or context for a failure)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        """Create a success response."""
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        data: Any = None,
    ) -> "ApiResponse[Any]":
        """
        Create a known failure response.

        Use when the system knows exactly why the operation failed.
        """
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            data=data,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )

    @classmethod
    def unknown_failure(cls, detail: str | None = None) -> "ApiResponse[Any]":
        """Create an unknown failure response for unexpected exceptions."""
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message="Something went wrong on our side. Please retry.",
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def response_data(self) -> Any:
        """Structured context attached to the failure response."""
        return None

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
            data=self.response_data(),
        )


# =============================================================================
# LOOKUP AND AUTHORIZATION
# =============================================================================


class NotFoundError(KnownError):
    """An entity id did not resolve."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{entity} not found.",
            detail=f"{entity} id={entity_id}",
            status_code=404,
        )


class RecipientNotFoundError(NotFoundError):
    """The counter-party of a trade, request or invite does not exist."""

    def __init__(self, user_id: str):
        super().__init__("Recipient", user_id)


class UnauthenticatedError(KnownError):
    """The request carries no caller identity."""

    def __init__(self, header: str):
        self.header = header
        super().__init__(
            kind=FailureKind.UNAUTHENTICATED,
            message="Authentication required.",
            detail=f"missing header {header}",
            status_code=401,
        )


class ForbiddenError(KnownError):
    """The caller is not allowed to act on this entity."""

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        super().__init__(
            kind=FailureKind.FORBIDDEN,
            message=f"You are not allowed to {action}.",
            detail=f"actor={actor_id}",
            status_code=403,
        )


# =============================================================================
# STATE AND UNIQUENESS
# =============================================================================


class InvalidTransitionError(KnownError):
    """A status change is not permitted from the current status."""

    def __init__(self, entity: str, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(
            kind=FailureKind.INVALID_TRANSITION,
            message=message or f"This {entity} cannot move from '{current}' to '{target}'.",
            detail=f"{entity}: {current} -> {target}",
            suggestion="Refresh to see the latest status.",
            status_code=409,
        )


class DuplicateRequestError(KnownError):
    """An equivalent trade request is already pending."""

    def __init__(self, existing_id: int):
        self.existing_id = existing_id
        super().__init__(
            kind=FailureKind.DUPLICATE_REQUEST,
            message="An equivalent trade request is already pending between these users.",
            detail=f"pending request id={existing_id}",
            status_code=409,
        )


class DuplicateInviteError(KnownError):
    """A trade room invite is already pending between the two users."""

    def __init__(self, existing_id: int):
        self.existing_id = existing_id
        super().__init__(
            kind=FailureKind.DUPLICATE_INVITE,
            message="A trade room invite is already pending between you and this friend.",
            detail=f"pending invite id={existing_id}",
            status_code=409,
        )


class SelfTradeNotAllowedError(KnownError):
    def __init__(self) -> None:
        super().__init__(
            kind=FailureKind.SELF_TRADE,
            message="You cannot trade with yourself.",
            status_code=400,
        )


class SelfInviteError(KnownError):
    def __init__(self) -> None:
        super().__init__(
            kind=FailureKind.SELF_INVITE,
            message="You cannot invite yourself to a trade room.",
            status_code=400,
        )


class NotFriendsError(KnownError):
    def __init__(self, user_id: str, other_id: str):
        super().__init__(
            kind=FailureKind.NOT_FRIENDS,
            message="You can only invite users who are your friends.",
            detail=f"{user_id} and {other_id} are not mutual friends",
            status_code=403,
        )


# =============================================================================
# OWNERSHIP
# =============================================================================


class InvalidCardRefError(KnownError):
    """A card reference is malformed."""

    def __init__(self, reason: str):
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=f"Invalid card reference: {reason}",
            status_code=400,
        )


class InsufficientOwnershipError(KnownError):
    """
    One or more card references are not backed by the owner's collection.

    Signals the card lists are stale. The caller must re-negotiate; the
    operation is never retried.
    """

    def __init__(self, shortfalls: list[tuple[str, str, int, int]]):
        # (owner_id, card_id, required, owned)
        self.shortfalls = shortfalls
        parts = [
            f"{owner} owns {owned}/{required} of {card}"
            for owner, card, required, owned in shortfalls
        ]
        super().__init__(
            kind=FailureKind.INSUFFICIENT_OWNERSHIP,
            message="Some cards in this trade are no longer owned in the required quantity.",
            detail="; ".join(parts),
            suggestion="Update the offered cards and try again.",
            status_code=409,
        )

    def response_data(self) -> Any:
        return [
            {"owner_id": owner, "card_id": card, "required": required, "owned": owned}
            for owner, card, required, owned in self.shortfalls
        ]


# =============================================================================
# THROTTLING AND CAPACITY
# =============================================================================


class RateLimitedError(KnownError):
    """No pack tokens left. Expected and frequent, not a fault."""

    def __init__(self, next_allowed_at: datetime | None):
        self.next_allowed_at = next_allowed_at
        super().__init__(
            kind=FailureKind.RATE_LIMITED,
            message="No pack tokens left. Wait for the next refill.",
            detail=next_allowed_at.isoformat() if next_allowed_at else None,
            suggestion="Tokens refill automatically over time.",
            status_code=429,
        )

    def response_data(self) -> Any:
        return {
            "next_allowed_at": (
                self.next_allowed_at.isoformat() if self.next_allowed_at else None
            )
        }


class RoomCodeExhaustedError(KnownError):
    """Could not find a free private room code."""

    def __init__(self, attempts: int):
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message="Could not allocate a private room code.",
            detail=f"gave up after {attempts} attempts",
            suggestion="Please retry.",
            status_code=503,
        )
