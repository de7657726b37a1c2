"""Event filters deciding which store events enqueue a reconcile request."""

from .manifest import OSBuild, OSBuildConfig, Resource

__all__ = [
    "Predicate",
    "GenerationChangedPredicate",
    "OSBuildConfigChangedPredicate",
    "BuildTerminatedPredicate",
]


class Predicate:
    """Base predicate that passes every event."""

    def create(self, obj: Resource) -> bool:
        return True

    def update(self, old: Resource, new: Resource) -> bool:
        return True

    def delete(self, obj: Resource) -> bool:
        return True


class GenerationChangedPredicate(Predicate):
    """Pass updates only when the desired state of the object changed."""

    def update(self, old: Resource, new: Resource) -> bool:
        return old.metadata.generation != new.metadata.generation


class OSBuildConfigChangedPredicate(Predicate):
    """Pass config updates that may require a new build.

    An update passes when the spec changed and the config change trigger is
    enabled, or when the template changed since the last build and the
    template change trigger is enabled. Status-only updates written by the
    reconciler itself are filtered out.
    """

    def update(self, old: Resource, new: Resource) -> bool:
        if not isinstance(new, OSBuildConfig):
            return False
        triggers = new.spec.triggers
        generation_changed = (
            old.metadata.generation != new.metadata.generation
            and triggers.config_change_enabled
        )
        last = new.status.last_template_resource_version
        current = new.status.current_template_resource_version
        template_changed = (
            last is not None
            and current is not None
            and last != current
            and triggers.template_change_enabled
        )
        return generation_changed or template_changed


class BuildTerminatedPredicate(Predicate):
    """Pass owned build updates only when the build reaches a terminal condition.

    The owning config decides whether to start the next phase once a build
    finishes, so intermediate progress does not need to wake it up.
    """

    def create(self, obj: Resource) -> bool:
        return False

    def update(self, old: Resource, new: Resource) -> bool:
        if not isinstance(old, OSBuild) or not isinstance(new, OSBuild):
            return False
        return new.terminal and not old.terminal

    def delete(self, obj: Resource) -> bool:
        return False
