"""Store index functions used to look up related objects."""

from .manifest import OSBuildConfig, Resource

CONFIG_BY_TEMPLATE = "config-by-template"


def config_by_template(obj: Resource) -> list[str]:
    """Index OSBuildConfig objects by the name of the template they reference."""
    if not isinstance(obj, OSBuildConfig):
        return []
    if not obj.spec.template or not obj.spec.template.os_build_config_template_ref:
        return []
    return [obj.spec.template.os_build_config_template_ref]
