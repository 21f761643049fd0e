"""
Settings Schema.

Field definitions and validation for the ``[extensions]`` settings table.
"""

from dataclasses import dataclass
from typing import Any


class SchemaError(Exception):
    """Base exception for schema-related errors."""

    pass


class ValidationError(SchemaError):
    """Raised when a settings value is invalid."""

    pass


@dataclass
class SettingField:
    """
    One settings key.

    Attributes:
        type_: Expected value type
        default: Default value
        description: Human-readable description (written as a TOML comment)
        min: Exclusive lower bound for numbers
        non_empty: Reject empty strings
    """

    type_: type
    default: Any
    description: str = ""
    min: float | None = None
    non_empty: bool = False

    def __post_init__(self):
        if not isinstance(self.default, self.type_):
            raise SchemaError(
                f"Default value {self.default!r} does not match type {self.type_.__name__}"
            )
        if self.min is not None and self.type_ not in (int, float):
            raise SchemaError(
                f"min constraint only supported for int and float, got {self.type_.__name__}"
            )

    def coerce(self, value: Any) -> Any:
        """
        Validate a value and convert it to the field type.

        TOML integers are accepted for float fields.

        Raises:
            ValidationError: If the value is invalid
        """
        if self.type_ is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)

        if isinstance(value, bool) and self.type_ is not bool:
            raise ValidationError(f"Expected type {self.type_.__name__}, got bool")
        if not isinstance(value, self.type_):
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {type(value).__name__}"
            )

        if self.min is not None and value <= self.min:
            raise ValidationError(f"Value {value} must be greater than {self.min}")
        if self.non_empty and not value:
            raise ValidationError("Value must not be empty")

        return value


def validate_settings(
    values: dict[str, Any], schema: dict[str, SettingField]
) -> dict[str, Any]:
    """
    Validate a settings table, filling in defaults for missing keys.

    Returns:
        Complete, coerced settings dictionary

    Raises:
        ValidationError: If a key is unknown or a value is invalid
    """
    for key in values:
        if key not in schema:
            raise ValidationError(f"Unknown setting: {key}")

    result = {}
    for name, setting in schema.items():
        if name not in values:
            result[name] = setting.default
            continue
        try:
            result[name] = setting.coerce(values[name])
        except ValidationError as e:
            raise ValidationError(f"Setting '{name}': {e}") from e

    return result
