"""Tests for merging template and config customizations."""

import copy

from osbuild_operator.customizations import (
    merge_customizations,
    user_configuration_equal,
)
from osbuild_operator.manifest import (
    Customizations,
    ParameterValue,
    Services,
    User,
    UserConfiguration,
)


def test_single_layer() -> None:
    """Test that a single layer is returned as a copy."""
    config = Customizations(packages=["vim"])
    result = merge_customizations(None, config)
    assert result == config
    assert result is not config

    template = Customizations(users=[User(name="admin")])
    result = merge_customizations(template, None)
    assert result == template
    assert result is not template

    assert merge_customizations(None, None) is None


def test_merge_packages() -> None:
    """Test that packages are the sorted union of both layers."""
    result = merge_customizations(
        Customizations(packages=["vim", "git"]),
        Customizations(packages=["curl", "git"]),
    )
    assert result
    assert result.packages == ["curl", "git", "vim"]

    result = merge_customizations(Customizations(), Customizations(packages=[]))
    assert result
    assert result.packages is None


def test_merge_users() -> None:
    """Test that config users replace template users with the same name."""
    result = merge_customizations(
        Customizations(
            users=[
                User(name="root", key="template-key"),
                User(name="admin", groups=["wheel"]),
            ]
        ),
        Customizations(users=[User(name="root", key="config-key")]),
    )
    assert result
    assert result.users == [
        User(name="admin", groups=["wheel"]),
        User(name="root", key="config-key"),
    ]


def test_merge_services_config_wins() -> None:
    """Test that the config layer wins conflicts with the template layer."""
    result = merge_customizations(
        Customizations(services=Services(enabled=["a", "b"], disabled=["c"])),
        Customizations(services=Services(enabled=["c"], disabled=["a"])),
    )
    assert result
    assert result.services == Services(enabled=["b", "c"], disabled=["a"])


def test_merge_services_same_layer_conflicts() -> None:
    """Test services both enabled and disabled within one layer."""
    result = merge_customizations(
        Customizations(services=Services(enabled=["y"], disabled=["y"])),
        Customizations(services=Services(enabled=["x", "z"], disabled=["x"])),
    )
    assert result
    # The config enables x so it stays enabled, the template disables y
    assert result.services == Services(enabled=["x", "z"], disabled=["y"])


def test_merge_inherits_missing_fields() -> None:
    """Test that fields absent from the config are inherited unchanged."""
    template = Customizations(
        packages=["git"],
        users=[User(name="admin")],
        services=Services(enabled=["sshd"]),
    )
    original = copy.deepcopy(template)
    result = merge_customizations(template, Customizations(packages=["vim"]))
    assert result == Customizations(
        packages=["git", "vim"],
        users=[User(name="admin")],
        services=Services(enabled=["sshd"]),
    )
    assert template == original


def test_user_configuration_equal() -> None:
    """Test comparing user configurations ignores list order."""
    first = UserConfiguration(
        customizations=Customizations(
            packages=["vim", "git"],
            users=[User(name="admin", groups=["wheel", "adm"])],
        ),
        template_parameters=[
            ParameterValue(name="a", value="1"),
            ParameterValue(name="b", value="2"),
        ],
    )
    second = UserConfiguration(
        customizations=Customizations(
            packages=["git", "vim"],
            users=[User(name="admin", groups=["adm", "wheel"])],
            services=Services(enabled=[]),
        ),
        template_parameters=[
            ParameterValue(name="b", value="2"),
            ParameterValue(name="a", value="1"),
        ],
    )
    assert user_configuration_equal(first, second)

    assert second.template_parameters
    second.template_parameters[0].value = "3"
    assert not user_configuration_equal(first, second)


def test_user_configuration_empty() -> None:
    """Test that missing and empty configurations compare equal."""
    assert user_configuration_equal(None, UserConfiguration())
    assert user_configuration_equal(
        UserConfiguration(customizations=Customizations(packages=[])),
        UserConfiguration(template_parameters=[]),
    )
    assert not user_configuration_equal(
        None, UserConfiguration(customizations=Customizations(packages=["vim"]))
    )


def test_merge_is_idempotent() -> None:
    """Test that merging the template into a merged result changes nothing."""
    template = Customizations(
        packages=["git", "vim"],
        users=[User(name="root", key="template-key"), User(name="admin")],
        services=Services(enabled=["a", "b", "y"], disabled=["c", "y"]),
    )
    config = Customizations(
        packages=["curl"],
        users=[User(name="root", key="config-key", groups=["wheel"])],
        services=Services(enabled=["c"], disabled=["a"]),
    )
    merged = merge_customizations(template, config)
    assert merged
    assert merged.services == Services(enabled=["b", "c"], disabled=["a", "y"])

    remerged = merge_customizations(template, merged)
    assert remerged == merged
    assert user_configuration_equal(
        UserConfiguration(customizations=remerged),
        UserConfiguration(customizations=merged),
    )
