"""
Error taxonomy for Ferrebot.

Every error carries a short machine-readable ``code`` plus optional
``details`` so the orchestrator can log a diagnostic while the user only
sees a friendly reply.
"""

from typing import Any, Optional


class FerrebotError(Exception):
    """
    Base exception for the assistant.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(self.message)


class ExternalServiceUnavailable(FerrebotError):
    """
    Raised when a remote dependency (LLM, embedding API, chat channel) fails or times out.
    """
    def __init__(self, message: str = "External service unavailable", code: str = "EXTERNAL_SERVICE_UNAVAILABLE", details: Optional[Any] = None):
        super().__init__(message, code=code, details=details)


class EmbeddingUnavailableError(ExternalServiceUnavailable):
    """Raised when text cannot be embedded after all retries."""
    def __init__(self, message: str = "Embedding service unavailable", details: Optional[Any] = None):
        super().__init__(message, code="EMBEDDING_UNAVAILABLE", details=details)


class ClassifierUnavailableError(ExternalServiceUnavailable):
    """Raised when the LLM intent classifier fails or answers outside its contract."""
    def __init__(self, message: str = "Intent classifier unavailable", details: Optional[Any] = None):
        super().__init__(message, code="CLASSIFIER_UNAVAILABLE", details=details)


class MessagingError(ExternalServiceUnavailable):
    """Raised by a messenger when the chat channel rejects a send."""
    def __init__(self, message: str = "Messaging channel error", details: Optional[Any] = None):
        super().__init__(message, code="MESSAGING_ERROR", details=details)


class DataInconsistencyError(FerrebotError):
    """
    Raised when persisted data disagrees with itself, e.g. a vector index
    without its document list or a cart line for a product that no longer exists.
    """
    def __init__(self, message: str = "Data inconsistency", details: Optional[Any] = None):
        super().__init__(message, code="DATA_INCONSISTENCY", details=details)


class OrderError(FerrebotError):
    """
    Base class for order creation failures. Raising one guarantees that no
    stock was decremented and no order was stored.
    """
    def __init__(self, message: str = "Order could not be created", code: str = "ORDER_ERROR", details: Optional[Any] = None):
        super().__init__(message, code=code, details=details)


class ProductNotFoundError(OrderError):
    def __init__(self, product_id: Any, details: Optional[Any] = None):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} not found",
            code="PRODUCT_NOT_FOUND",
            details=details,
        )


class InsufficientStockError(OrderError):
    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}: requested {requested}, available {available}",
            code="INSUFFICIENT_STOCK",
            details={"requested": requested, "available": available},
        )


class InvalidStateError(FerrebotError):
    """
    Raised when a transition is requested from a state it cannot apply to.
    """
    def __init__(self, message: str = "Invalid conversation state", details: Optional[Any] = None):
        super().__init__(message, code="INVALID_STATE", details=details)
