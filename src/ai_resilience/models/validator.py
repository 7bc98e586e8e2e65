"""
Model output validation.

Validates raw model output (JSON string or dict) against a pydantic model and
converts failures into ModelResponseInvalidError so the retry policy treats
them like any other failed call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ai_resilience.errors import ModelResponseInvalidError


@dataclass
class ValidationResult:
    """Result of validation.

    Attributes:
        valid: Whether validation passed
        errors: List of validation errors
        data: Validated model instance
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    data: BaseModel | None = None

    def __bool__(self) -> bool:
        return self.valid


def _format_errors(exc: PydanticValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        errors.append(f"{loc}: {msg}" if loc else msg)
    return errors


class ResponseValidator:
    """Validator for one operation's response schema.

    Example:
        >>> validator = ResponseValidator(CategorizationResult)
        >>> result = validator.validate('{"category": "spam", ...}')
        >>> print(result.valid)
    """

    def __init__(self, model: type[BaseModel]) -> None:
        if not hasattr(model, "model_validate"):
            raise ValueError("Schema must be a Pydantic model class")
        self._model = model

    @property
    def model(self) -> type[BaseModel]:
        return self._model

    def validate(self, data: Any) -> ValidationResult:
        """Validate a JSON string or dict.

        Args:
            data: Raw model output

        Returns:
            ValidationResult with the parsed model instance
        """
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                return ValidationResult(valid=False, errors=[f"Invalid JSON: {e}"])

        if not isinstance(data, dict):
            return ValidationResult(
                valid=False,
                errors=[f"Expected object, got {type(data).__name__}"],
            )

        try:
            return ValidationResult(valid=True, data=self._model.model_validate(data))
        except PydanticValidationError as e:
            return ValidationResult(valid=False, errors=_format_errors(e))
        except ValueError as e:
            return ValidationResult(valid=False, errors=[str(e)])

    def validate_or_raise(self, data: Any, operation: str | None = None) -> dict[str, Any]:
        """Validate and return the result as a plain dict.

        Raises:
            ModelResponseInvalidError: If validation fails
        """
        result = self.validate(data)
        if not result.valid or result.data is None:
            raise ModelResponseInvalidError(
                "Model response failed schema validation: " + "; ".join(result.errors),
                errors=result.errors,
                raw=data,
                operation=operation,
            )
        return result.data.model_dump(mode="json")
