class ConfigurationError(ValueError):
    """Invalid rollout definition. Raised before any startup action runs."""


class DuplicateNodeError(ConfigurationError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"duplicate node name: {name}")


class UnknownDependencyError(ConfigurationError):
    def __init__(self, node, dependency):
        self.node = node
        self.dependency = dependency
        super().__init__(f"node {node!r} depends on unknown node {dependency!r}")


class CycleError(ConfigurationError):
    def __init__(self, members):
        self.members = list(members)
        super().__init__(f"dependency cycle between: {', '.join(self.members)}")


class MissingConfigurationError(ConfigurationError):
    """One or more required settings are absent."""

    def __init__(self, missing, what="environment variables"):
        self.missing = list(missing)
        super().__init__(f"missing required {what}: {', '.join(self.missing)}")


class StartupError(RuntimeError):
    """A startup action reported failure."""
