"""Exceptions related to osbuild-operator."""

__all__ = [
    "OSBuildException",
    "InputException",
    "ObjectNotFoundError",
    "ObjectExistsError",
    "ConflictError",
    "ComposerException",
    "ValidationError",
    "TemplateParameterError",
    "TemplateRenderError",
]


class OSBuildException(Exception):
    """Generic base exception used for this library."""


class InputException(OSBuildException):
    """Raised when the input files or values are not formatted as expected."""


class ObjectNotFoundError(OSBuildException):
    """Raised when an object is not found in the store."""

    def __init__(self, resource_name: str, message: str | None = None) -> None:
        super().__init__(message or f"Object {resource_name} not found")
        self.resource_name = resource_name


class ObjectExistsError(OSBuildException):
    """Raised when creating an object that already exists in the store."""


class ConflictError(OSBuildException):
    """Raised when a write is rejected because the object changed since it was read."""

    def __init__(
        self, resource_name: str, expected: str | None, actual: str | None
    ) -> None:
        super().__init__(
            f"Conflict writing {resource_name}: expected resource version "
            f"{expected} but found {actual}"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual


class ComposerException(OSBuildException):
    """Raised when a request to the compose service fails."""


class ValidationError(OSBuildException):
    """Raised when user supplied values do not pass validation."""


class TemplateParameterError(ValidationError):
    """Raised when a template parameter value does not match its declared type."""

    def __init__(self, name: str, param_type: str, value: str) -> None:
        super().__init__(
            f"parameter {name} of type {param_type} was given {value} value, "
            f"which can't be represented as {param_type}"
        )
        self.name = name
        self.param_type = param_type
        self.value = value


class TemplateRenderError(ValidationError):
    """Raised when a template can't be parsed or rendered."""
