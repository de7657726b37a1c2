"""Merging of template and config customizations.

A config that references a template inherits the template customizations,
with the config layer taking precedence:

- Packages are the union of both layers.
- Users are keyed by name and a config user replaces a template user.
- A service ends up either enabled or disabled, never both. The config layer
  wins conflicts with the template layer. A service that is both enabled and
  disabled within one layer is enabled when that layer is the config and
  disabled when it is the template.

Merged lists are sorted so that the result serializes the same way no matter
the input order. Comparisons of the resulting user configuration treat lists
as sets.
"""

import copy
from enum import Enum
from typing import Any

from .manifest import (
    Customizations,
    ParameterValue,
    Services,
    User,
    UserConfiguration,
)

__all__ = [
    "merge_customizations",
    "user_configuration_equal",
]


class _Layer(Enum):
    TEMPLATE = "template"
    CONFIG = "config"


def merge_customizations(
    template: Customizations | None, config: Customizations | None
) -> Customizations | None:
    """Merge the template customizations with the config customizations.

    The inputs are never modified. When only one layer is present a copy of
    it is returned as is. A field absent from the config layer is inherited
    from the template unchanged.
    """
    if template is None:
        return copy.deepcopy(config)
    result = copy.deepcopy(template)
    if config is None:
        return result
    if config.services is not None:
        result.services = _merge_services(template.services, config.services)
    if config.packages is not None:
        result.packages = _merge_packages(template.packages, config.packages)
    if config.users is not None:
        result.users = _merge_users(template.users, config.users)
    return result


def _merge_services(template: Services | None, config: Services) -> Services:
    enabled: dict[str, _Layer] = {}
    disabled: dict[str, _Layer] = {}
    if template is not None:
        enabled.update((name, _Layer.TEMPLATE) for name in template.enabled or ())
        disabled.update((name, _Layer.TEMPLATE) for name in template.disabled or ())
    enabled.update((name, _Layer.CONFIG) for name in config.enabled or ())
    disabled.update((name, _Layer.CONFIG) for name in config.disabled or ())

    for name in list(disabled):
        if (source := enabled.get(name)) is None:
            continue
        # The layer that enabled the service decides the winner
        if source == _Layer.CONFIG:
            del disabled[name]
        else:
            del enabled[name]
    return Services(enabled=sorted(enabled) or None, disabled=sorted(disabled) or None)


def _merge_packages(template: list[str] | None, config: list[str]) -> list[str] | None:
    return sorted({*(template or ()), *config}) or None


def _merge_users(template: list[User] | None, config: list[User]) -> list[User] | None:
    users: dict[str, User] = {}
    for user in (*(template or ()), *config):
        users[user.name] = copy.deepcopy(user)
    return [users[name] for name in sorted(users)] or None


def _customizations_key(customizations: Customizations | None) -> Any:
    if customizations is None:
        return (frozenset(), frozenset(), frozenset(), frozenset())
    services = customizations.services or Services()
    return (
        frozenset(customizations.packages or ()),
        frozenset(
            (user.name, frozenset(user.groups or ()), user.key or "")
            for user in customizations.users or ()
        ),
        frozenset(services.enabled or ()),
        frozenset(services.disabled or ()),
    )


def _parameters_key(parameters: list[ParameterValue] | None) -> Any:
    return frozenset((param.name, param.value) for param in parameters or ())


def user_configuration_equal(
    first: UserConfiguration | None, second: UserConfiguration | None
) -> bool:
    """Compare two user configurations ignoring the order of all lists.

    A missing list and an empty list compare equal.
    """
    first = first or UserConfiguration()
    second = second or UserConfiguration()
    return _customizations_key(first.customizations) == _customizations_key(
        second.customizations
    ) and _parameters_key(first.template_parameters) == _parameters_key(
        second.template_parameters
    )
