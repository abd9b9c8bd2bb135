"""Domain exceptions.

All catalog-level errors that represent business rule violations or
failures of collaborators the catalog depends on.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Category Tree Errors
# ============================================================================


class CategoryNotFoundError(DomainError):
    """Raised when a category reference does not resolve."""

    error_code = "CATEGORY_NOT_FOUND"

    def __init__(self, category_id: str) -> None:
        super().__init__(
            f"Category {category_id} not found",
            details={"category_id": category_id},
        )


class CycleError(DomainError):
    """Raised when a reparent would make a node its own ancestor."""

    error_code = "CATEGORY_CYCLE"

    def __init__(self, category_id: str, parent_id: str) -> None:
        super().__init__(
            f"Category {category_id} cannot be moved under {parent_id}: "
            "the parent is the category itself or one of its descendants",
            details={"category_id": category_id, "parent_id": parent_id},
        )


class DepthExceededError(DomainError):
    """Raised when a category would be placed below the deepest level."""

    error_code = "CATEGORY_DEPTH_EXCEEDED"

    def __init__(self, level: int, max_level: int, category_id: str | None = None) -> None:
        super().__init__(
            f"Category level {level} exceeds the maximum level {max_level}",
            details={
                "category_id": category_id,
                "level": level,
                "max_level": max_level,
            },
        )


# ============================================================================
# Product Errors
# ============================================================================


class ProductNotFoundError(DomainError):
    """Raised when a product does not exist."""

    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product {product_id} not found",
            details={"product_id": product_id},
        )


class ValidationError(DomainError):
    """Raised when input breaks one or more catalog rules.

    Attributes:
        errors: Field-tagged problems, each ``{"field": ..., "message": ...}``.
    """

    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: list[dict[str, str | None]]) -> None:
        self.errors = errors
        summary = "; ".join(e["message"] for e in errors) or "Invalid input"
        super().__init__(summary, details={"errors": errors})

    @property
    def messages(self) -> list[str]:
        """Plain messages without field tags."""
        return [e["message"] for e in self.errors]


class ProductValidationError(ValidationError):
    """Raised when a product draft fails validation."""


class DuplicateProductError(DomainError):
    """Raised when an incoming product matches an existing one."""

    error_code = "DUPLICATE_PRODUCT"

    def __init__(self, reason: str, existing_id: str | None = None) -> None:
        super().__init__(
            f"Duplicate product: {reason}",
            details={"reason": reason, "existing_id": existing_id},
        )
        self.reason = reason
        self.existing_id = existing_id


class IntegrityConstraintError(ValidationError):
    """Raised when storage rejects a write on a uniqueness constraint.

    The check-then-write race on SKUs and slugs ends here, so it is
    reported with the same shape as a validation failure.
    """

    error_code = "INTEGRITY_CONSTRAINT"

    def __init__(self, field: str, message: str) -> None:
        super().__init__([{"field": field, "message": message}])


# ============================================================================
# Collaborator and Infrastructure Errors
# ============================================================================


class ExternalCollaboratorError(DomainError):
    """Raised when an external collaborator (image host) fails."""

    error_code = "EXTERNAL_COLLABORATOR_ERROR"

    def __init__(self, collaborator: str, message: str, **details: Any) -> None:
        super().__init__(
            f"{collaborator}: {message}",
            details={"collaborator": collaborator, **details},
        )
        self.collaborator = collaborator


class FeedFormatError(DomainError):
    """Raised when an import feed cannot be parsed at all."""

    error_code = "FEED_FORMAT_ERROR"


class StorageUnavailableError(DomainError):
    """Raised when the database cannot be reached."""

    error_code = "STORAGE_UNAVAILABLE"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Storage unavailable: {reason}", details={"reason": reason})
