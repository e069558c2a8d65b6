"""
Result Pattern Implementation
Provides a standardized way for entry points to return results with success/failure status
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

from services.common.errors import AppError

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    A generic Result class for service entry point returns.

    Encapsulates either a successful result with data or a failure with error information.

    Examples:
        # Success case
        result = Result.success({'ticket_id': 7})
        if result.is_success:
            print(result.data)

        # Failure case
        result = Result.failure("Channel connection not found", code="NOT_FOUND")
        if result.is_failure:
            print(result.error)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a successful result.

        Args:
            data: The successful result data
            metadata: Optional metadata about the operation

        Returns:
            A Result instance representing success
        """
        return cls(
            success=True,
            data=data,
            error=None,
            error_code=None,
            metadata=metadata
        )

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Error message describing the failure
            code: Optional error code for programmatic handling
            metadata: Optional metadata about the failure

        Returns:
            A Result instance representing failure
        """
        return cls(
            success=False,
            data=None,
            error=error,
            error_code=code,
            metadata=metadata
        )

    @classmethod
    def from_error(cls, error: AppError) -> 'Result[T]':
        """Create a failure result from a domain error, keeping its code and details."""
        return cls.failure(error.message, code=error.code, metadata=error.details or None)

    @property
    def is_success(self) -> bool:
        """Check if the result represents a success."""
        return self.success

    @property
    def is_failure(self) -> bool:
        """Check if the result represents a failure."""
        return not self.success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
