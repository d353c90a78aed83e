"""
Typed exception hierarchy for the replenishment kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (an HTTP layer, the auto-close scheduler, tests) must react to a
rejected transition without parsing message strings.  Every error therefore
has:
  1. a TYPED exception class (catch by type, not message)
  2. a CODE attribute (machine-readable, API-safe)
  3. structured DATA (order id, status, sku, ...)

Example:
    try:
        lifecycle.approve(order_id, manager, approvals)
    except InvalidStateError as e:
        api_response(409, code=e.code, status=e.current_status)
    except NotAuthorizedError as e:
        api_response(403, code=e.code, reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReplenishmentError (base)
    |
    +-- OrderStateError
    |   +-- InvalidStateError
    |       +-- AutoCloseNotDueError
    |
    +-- OrderLookupError
    |   +-- OrderNotFoundError
    |   +-- ItemNotFoundError
    |   +-- IssueNotFoundError
    |
    +-- OrderValidationError
    |   +-- InvalidQuantityError
    |   +-- EvidenceRequiredError
    |   +-- TrackingRequiredError
    |   +-- InvalidPayloadError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- NotificationError
        +-- NotificationDeliveryError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
State           | INVALID_STATE                 | Action not legal from current status,
                |                               | or status changed under the caller
                | AUTO_CLOSE_NOT_DUE            | Close attempted before auto_close_at
----------------|-------------------------------|-------------------------------------
Lookup          | ORDER_NOT_FOUND               | Order id does not exist
                | ITEM_NOT_FOUND                | Payload names a sku not on the order
                | ISSUE_NOT_FOUND               | Received-issue id does not exist
----------------|-------------------------------|-------------------------------------
Validation      | INVALID_QUANTITY              | Negative / non-integer quantity
                | EVIDENCE_REQUIRED             | Stage needs an attachment
                | TRACKING_REQUIRED             | Dispatch without courier details
                | INVALID_PAYLOAD               | Empty or malformed request payload
----------------|-------------------------------|-------------------------------------
Authorization   | NOT_AUTHORIZED                | Wrong role, non-owning manager,
                |                               | not the requester, wrong branch
----------------|-------------------------------|-------------------------------------
Notification    | NOTIFICATION_DELIVERY_FAILED  | Sink raised; logged by the worker,
                |                               | never surfaced to workflow callers

None of these are retried automatically.
"""

from __future__ import annotations


class ReplenishmentError(Exception):
    """Base exception for all replenishment kernel errors."""

    code: str = "REPLENISHMENT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# State-related exceptions


class OrderStateError(ReplenishmentError):
    """Base for lifecycle state errors."""

    code: str = "ORDER_STATE_ERROR"


class InvalidStateError(OrderStateError):
    """The order's status does not permit the requested action.

    Also raised when the conditional update finds that another transaction
    changed the order after it was read.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        order_id: str,
        current_status: str | None,
        action: str,
        expected: tuple[str, ...] = (),
    ):
        self.order_id = order_id
        self.current_status = current_status
        self.action = action
        self.expected = expected
        detail = f" (expected one of {', '.join(expected)})" if expected else ""
        super().__init__(
            f"Cannot {action} order {order_id} in status {current_status}{detail}"
        )


class AutoCloseNotDueError(InvalidStateError):
    """Close attempted before the working-hours deadline elapsed."""

    code: str = "AUTO_CLOSE_NOT_DUE"

    def __init__(self, order_id: str, auto_close_at: str | None, now: str):
        self.order_id = order_id
        self.current_status = "CONFIRM_ORDER_RECEIVED"
        self.action = "CLOSE"
        self.expected = ()
        self.auto_close_at = auto_close_at
        self.now = now
        ReplenishmentError.__init__(
            self,
            f"Order {order_id} is not due for auto-close "
            f"(auto_close_at={auto_close_at}, now={now})",
        )


# Lookup exceptions


class OrderLookupError(ReplenishmentError):
    """Base for missing-entity errors."""

    code: str = "ORDER_LOOKUP_ERROR"


class OrderNotFoundError(OrderLookupError):
    """Order id does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ItemNotFoundError(OrderLookupError):
    """A payload references a sku that is not a line of the order."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, order_id: str, sku: str):
        self.order_id = order_id
        self.sku = sku
        super().__init__(f"Item {sku} not found on order {order_id}")


class IssueNotFoundError(OrderLookupError):
    """Received-issue id does not exist."""

    code: str = "ISSUE_NOT_FOUND"

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue not found: {issue_id}")


# Validation exceptions


class OrderValidationError(ReplenishmentError):
    """Base for rejected request payloads."""

    code: str = "ORDER_VALIDATION_ERROR"


class InvalidQuantityError(OrderValidationError):
    """Quantity is negative, non-integer, or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, sku: str, quantity: object, reason: str = "must be >= 0"):
        self.sku = sku
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity!r} for item {sku}: {reason}")


class EvidenceRequiredError(OrderValidationError):
    """Stage transition requires at least one evidence attachment."""

    code: str = "EVIDENCE_REQUIRED"

    def __init__(self, order_id: str, target_status: str, stage: str):
        self.order_id = order_id
        self.target_status = target_status
        self.stage = stage
        super().__init__(
            f"Moving order {order_id} to {target_status} requires "
            f"at least one {stage} evidence attachment"
        )


class TrackingRequiredError(OrderValidationError):
    """Dispatch attempted without courier tracking details."""

    code: str = "TRACKING_REQUIRED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Dispatching order {order_id} requires tracking details")


class InvalidPayloadError(OrderValidationError):
    """Request payload is empty or malformed."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        prefix = f"{field}: " if field else ""
        super().__init__(f"Invalid payload: {prefix}{reason}")


# Authorization exceptions


class AuthorizationError(ReplenishmentError):
    """Base for actor role / ownership errors."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor's role or identity does not permit the action on this order."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, role: str, action: str, reason: str):
        self.actor_id = actor_id
        self.role = role
        self.action = action
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} ({role}) may not {action}: {reason}"
        )


# Notification exceptions


class NotificationError(ReplenishmentError):
    """Base for notification errors.  Never escapes the worker."""

    code: str = "NOTIFICATION_ERROR"


class NotificationDeliveryError(NotificationError):
    """A sink failed to deliver an event."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, event_type: str, order_id: str | None, reason: str):
        self.event_type = event_type
        self.order_id = order_id
        self.reason = reason
        super().__init__(
            f"Delivery of {event_type} for order {order_id} failed: {reason}"
        )
