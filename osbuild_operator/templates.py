"""Rendering of parameterized kickstart templates.

A template declares typed parameters with default values. A config supplies
values for some of them. Values are validated against the declared type before
rendering and undeclared values are ignored.

Placeholders use Jinja2 expression syntax, e.g. `{{ hostname }}`. A
placeholder with no declared parameter renders as `<no value>`.
"""

import logging
import re

import jinja2

from .exceptions import TemplateParameterError, TemplateRenderError
from .manifest import Parameter, ParameterType, ParameterValue

__all__ = [
    "render_template",
    "validate_parameter",
]

_LOGGER = logging.getLogger(__name__)

BOOL_LITERALS = frozenset(
    {"1", "t", "T", "TRUE", "true", "True", "0", "f", "F", "FALSE", "false", "False"}
)
INT_RE = re.compile(r"^[+-]?[0-9]+$")
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
NO_VALUE = "<no value>"


class NoValueUndefined(jinja2.Undefined):
    """Undefined placeholder that renders as a marker instead of an empty string."""

    def __str__(self) -> str:
        return NO_VALUE


def validate_parameter(value: str, param_type: ParameterType | str) -> bool:
    """Return True if the value can be represented as the parameter type.

    Unknown types are treated as strings.
    """
    if param_type == ParameterType.BOOL:
        return value in BOOL_LITERALS
    if param_type == ParameterType.INT:
        return bool(INT_RE.match(value)) and INT64_MIN <= int(value) <= INT64_MAX
    return True


def _environment() -> jinja2.Environment:
    return jinja2.Environment(
        undefined=NoValueUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def render_template(
    text: str,
    parameters: list[Parameter] | None,
    values: list[ParameterValue] | None,
) -> str:
    """Render the template text with declared parameters and supplied values."""
    declared: dict[str, ParameterType] = {}
    context: dict[str, str] = {}
    for param in parameters or ():
        declared[param.name] = param.type
        context[param.name] = param.default_value

    for param_value in values or ():
        if (param_type := declared.get(param_value.name)) is None:
            _LOGGER.debug("Ignoring undeclared parameter %s", param_value.name)
            continue
        if not validate_parameter(param_value.value, param_type):
            raise TemplateParameterError(
                param_value.name, str(param_type), param_value.value
            )
        context[param_value.name] = param_value.value

    try:
        template = _environment().from_string(text)
        return template.render(context)
    except jinja2.TemplateError as err:
        raise TemplateRenderError(f"Unable to render template: {err}") from err
