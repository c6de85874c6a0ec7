import json
import logging
import re
from typing import Any, Dict

from agents.base_agent import BaseAgent
from core.router import ModelRouter
from core.state import ProblemInfo, Stage, StageContext
from utils.errors import ErrorKind, ProviderError

logger = logging.getLogger(__name__)

PARSE_FAILURE_MESSAGE = "Failed to parse problem information from the AI response."
CODE_FENCE_MARKERS = re.compile(r"```json|```", re.IGNORECASE)
PROBLEM_FIELDS = ("problem_statement", "constraints", "example_input", "example_output")


class ProblemExtractorAgent(BaseAgent):
    """
    Agent responsible for reading the problem screenshots and extracting the
    problem statement, constraints and examples as structured JSON.
    """
    def __init__(self, router: ModelRouter):
        super().__init__(name="Problem Extractor", router=router)

    async def execute(self, context: StageContext) -> ProblemInfo:
        """
        Extracts ProblemInfo from the screenshots in `context`.

        Raises:
            ProviderError: model call failure, or PARSE_FAILURE when the
                response does not hold a JSON object.
        """
        logger.info(f"Executing {self.name} on {len(context.screenshots)} screenshot(s).")
        prompt = self._create_extraction_prompt(context.language)
        response = await self.router.dispatch(prompt, context.images, Stage.EXTRACTION, context.cancellation)

        problem_info = self._parse_problem_info(response)
        logger.info(f"Problem extracted: {problem_info.problem_statement[:80]!r}")
        return problem_info

    def _create_extraction_prompt(self, language: str) -> str:
        return (
            "\nExtract the coding problem details from these screenshots. Return in JSON format.\n"
            f"Preferred coding language we gonna use for this problem is {language}."
        )

    def _parse_problem_info(self, text: str) -> ProblemInfo:
        """Parses the JSON object out of the model text, tolerating code fences."""
        cleaned = CODE_FENCE_MARKERS.sub("", text).strip()
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            data = self._parse_embedded_object(cleaned)

        if not isinstance(data, dict):
            logger.error("Extraction response JSON is not an object.")
            raise ProviderError(ErrorKind.PARSE_FAILURE, PARSE_FAILURE_MESSAGE)
        return self._to_problem_info(data)

    def _parse_embedded_object(self, text: str) -> Any:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            logger.error(f"No JSON object found in extraction response: {text[:200]!r}")
            raise ProviderError(ErrorKind.PARSE_FAILURE, PARSE_FAILURE_MESSAGE)
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse extraction response as JSON: {e}")
            raise ProviderError(ErrorKind.PARSE_FAILURE, PARSE_FAILURE_MESSAGE) from e

    @staticmethod
    def _to_problem_info(data: Dict[str, Any]) -> ProblemInfo:
        values = {}
        for key in PROBLEM_FIELDS:
            value = data.get(key)
            if value is None:
                values[key] = ""
            elif isinstance(value, str):
                values[key] = value
            else:
                values[key] = json.dumps(value) if isinstance(value, (list, dict)) else str(value)
        return ProblemInfo(**values)
