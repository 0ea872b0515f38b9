"""
Order lifecycle error taxonomy. Each error is scoped to a single request;
the HTTP layer maps `code` to a status and the caller decides retry vs. messaging.
"""


class OrderError(Exception):
    """Base for every error raised at the core boundary."""
    code = "order_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NotFound(OrderError):
    """Referenced order, vendor or menu item does not exist."""
    code = "not_found"


class ValidationError(OrderError):
    """Malformed request (empty cart, bad quantity, blank location, ...)."""
    code = "validation_error"


class NotAuthorized(OrderError):
    """Actor is not a party to the order in the role it claims."""
    code = "not_authorized"


class InvalidTransition(OrderError):
    """Requested (current -> target) edge is not in the graph for this role."""
    code = "invalid_transition"

    def __init__(self, current_status: str | None = None, target_status: str | None = None, message: str = ""):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message or f"cannot move order from {current_status} to {target_status}")


class StaleTransition(OrderError):
    """Status precondition no longer holds; refetch before retrying."""
    code = "stale_transition"

    def __init__(self, current_status: str | None = None, message: str = ""):
        self.current_status = current_status
        super().__init__(message or f"order is already {current_status}, please refresh")


class AlreadyClaimed(OrderError):
    """Rider lost the claim race or the order left the available pool."""
    code = "already_claimed"

    def __init__(self, order_id: str | None = None):
        self.order_id = order_id
        super().__init__(f"order {order_id} is no longer available")
