from abc import ABC, abstractmethod
import logging
from typing import Any

from core.router import ModelRouter
from core.state import StageContext

logger = logging.getLogger(__name__)

class BaseAgent(ABC):
    """Abstract base class for the stage agents of the processing pipeline."""

    def __init__(self, name: str, router: ModelRouter):
        self.name = name
        self.router = router
        logger.info(f"Initializing agent: {self.name}")

    @abstractmethod
    async def execute(self, context: StageContext) -> Any:
        """
        Runs the agent's stage: builds its prompt, dispatches it through the
        router and parses the response.

        Args:
            context: Target language, cancellation token and the screenshots
                     and/or ProblemInfo the stage needs.

        Returns:
            The stage's structured result.

        Raises:
            ProviderError: if the model call or the result parsing fails.
        """
        pass

    def __str__(self):
        return f"Agent({self.name})"
