"""Abstract base stage.

A stage is one step of the delivery chain.  It declares its dependencies and
the secrets it needs, and implements :meth:`BaseStage.execute`, which
either returns a :class:`StageOutcome` or raises a ``StageError``.  The
sequencer owns ordering, gating, result recording and run state.
"""

from abc import ABC, abstractmethod

from delivery_pipeline.models.execution import StageOutcome
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import StageError


class BaseStage(ABC):
    """Base class for all pipeline stages.

    Args:
        name: Stage identifier, unique within a pipeline.
        depends_on: Names of the stages that must succeed first.
        secrets: Names of the secrets injected into this stage's context.
    """

    #: Error raised when a tool or service behind this stage fails.
    error_type: type[StageError] = StageError

    def __init__(
        self,
        name: str,
        depends_on: list[str] | None = None,
        secrets: list[str] | None = None,
    ) -> None:
        self.name = name
        self.depends_on = list(depends_on or [])
        self.secrets = list(secrets or [])

    @abstractmethod
    def execute(self, context: StageContext) -> StageOutcome:
        """Run the stage to completion.

        Raises:
            StageError: On any failure; the run halts.
        """
        ...

    def fail(self, message: str, **kwargs: object) -> StageError:
        """Build this stage's error type, tagged with the stage name."""
        return self.error_type(message, stage=self.name, **kwargs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, depends_on={self.depends_on!r})"
