import logging

from agents.base_agent import BaseAgent
from core.router import ModelRouter
from core.state import DebugPayload, ProblemInfo, Stage, StageContext
from utils.errors import ErrorKind, ProviderError
from utils.response_parser import parse_debug_response

logger = logging.getLogger(__name__)

class DebuggingAgent(BaseAgent):
    """
    Agent responsible for analyzing screenshots of the user's code, errors or
    failing test cases and suggesting fixes and improvements.
    """
    def __init__(self, router: ModelRouter):
        super().__init__(name="Debugging Agent", router=router)

    async def execute(self, context: StageContext) -> DebugPayload:
        """
        Sends the problem and every screenshot (problem + extra) for a debugging pass.

        Args:
            context: Must carry the stored ProblemInfo and the merged screenshots.

        Returns:
            The DebugPayload: extracted code, structured analysis and up to
            five summary thoughts.

        Raises:
            ProviderError: if ProblemInfo is missing or the model call fails.
        """
        problem_info = context.problem_info
        if problem_info is None:
            logger.error("Problem info is missing for debugging.")
            raise ProviderError(ErrorKind.GENERIC, "No problem info available")

        logger.info(f"Executing {self.name} on {len(context.screenshots)} screenshot(s).")
        prompt = self._create_debugging_prompt(problem_info, context.language)
        response = await self.router.dispatch(prompt, context.images, Stage.DEBUGGING, context.cancellation)

        result = parse_debug_response(response)
        logger.info(f"Debugging analysis received ({len(result.thoughts)} key point(s)).")
        return result

    def _create_debugging_prompt(self, problem_info: ProblemInfo, language: str) -> str:
        prompt_lines = [
            "You are a coding interview assistant helping debug and improve solutions. "
            "Analyze these screenshots which include either error messages, incorrect outputs, or test cases, "
            "and provide detailed debugging help.",
            "",
            f'I\'m solving this coding problem: "{problem_info.problem_statement}" in {language}. '
            "I need help with debugging or improving my solution. "
            "Here are screenshots of my code, the errors or test cases. Please provide a detailed analysis with:",
            "1. What issues you found in my code",
            "2. Specific improvements and corrections",
            "3. Any optimizations that would make the solution better",
            "4. A clear explanation of the changes needed",
            "",
            "YOUR RESPONSE MUST FOLLOW THIS EXACT STRUCTURE WITH THESE SECTION HEADERS:",
            "### Issues Identified",
            "- List each issue as a bullet point with clear explanation",
            "",
            "### Specific Improvements and Corrections",
            "- List specific code changes needed as bullet points",
            "",
            "### Optimizations",
            "- List any performance optimizations if applicable",
            "",
            "### Explanation of Changes Needed",
            "Here provide a clear explanation of why the changes are needed",
            "",
            "### Key Points",
            "- Summary bullet points of the most important takeaways",
            "",
            f"If you include code examples, use proper markdown code blocks with language specification (e.g. ```{language}).",
        ]
        return "\n".join(prompt_lines)
