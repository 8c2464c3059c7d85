"""
Structured Validation Error Utilities

Provides standardized error responses for validation failures.
Helps the operator console tell bad input apart from collaborator
or connectivity problems.

Error Response Format:
{
    "error": "invalid_parameter" | "validation_error",
    "parameter": "contact_id",
    "message": "contact_id must not be empty"
}
"""

from fastapi import HTTPException, status
from typing import Optional, Any

from utils.errors import ValidationError


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def validation_error(message: str, details: Optional[dict] = None) -> dict:
        response = {
            "error": "validation_error",
            "parameter": None,
            "message": message
        }
        if details:
            response["details"] = details
        return response

    @classmethod
    def from_error(cls, error: ValidationError) -> dict:
        """Body for a ValidationError raised by the service layer."""
        if error.field:
            return cls.invalid_parameter(error.field, error.message)
        return cls.validation_error(error.message)


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def raise_validation_error(error: ValidationError):
    """
    Raise HTTPException for a service-layer ValidationError.

    Raises:
        HTTPException with 400 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ValidationErrorResponse.from_error(error)
    )
