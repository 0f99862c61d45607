"""cellfx error hierarchy.

All cellfx-specific errors inherit from CellfxError for easy catching.
"""


class CellfxError(Exception):
    """Base error for all cellfx operations."""


class ConfigError(CellfxError):
    """Invalid graph configuration."""


class DependencyCycleError(CellfxError):
    """A node read itself, directly or transitively, while evaluating.

    ``path`` lists node labels from the node that started the loop to the
    node whose read closed it.
    """

    def __init__(self, path: list[str]) -> None:
        self.path = path
        super().__init__("Dependency cycle: " + " -> ".join(path))


class UnsetValueError(CellfxError):
    """Read of a Value that was created without an initial value and never set."""


class DisposedError(CellfxError):
    """Read of a Derived after dispose()."""


class RunawayCycleError(CellfxError):
    """Effects kept invalidating each other past GraphConfig.max_rounds."""


class SilentError(CellfxError):
    """Raised by req() to stop a computation without reporting a failure.

    Derived nodes cache it like any other failure. An effect that ends with
    it simply did nothing this cycle.
    """
