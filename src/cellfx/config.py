"""Graph configuration.

GraphConfig is frozen after creation and shared by every node of a Graph.
"""

from dataclasses import dataclass

from cellfx._errors import ConfigError


@dataclass(frozen=True, slots=True)
class GraphConfig:
    """Configuration for a reactive Graph.

    Attributes:
        name: Label used in log lines and reprs.
        max_rounds: Flush rounds allowed in one update cycle. Effects that set
            values re-dirty other effects, each re-dirtying starts a new round.
            Exceeding the limit raises RunawayCycleError.
        raise_effect_errors: When no ``on_error`` handler is installed on the
            graph, re-raise the first effect failure once every dirty effect
            of the cycle has run. Failures are always logged.

    """

    name: str = "graph"
    max_rounds: int = 100
    raise_effect_errors: bool = True

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ConfigError(f"max_rounds must be >= 1, got {self.max_rounds}")
