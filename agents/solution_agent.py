import logging

from agents.base_agent import BaseAgent
from core.router import ModelRouter
from core.state import ProblemInfo, SolutionPayload, Stage, StageContext
from utils.errors import ErrorKind, ProviderError
from utils.response_parser import parse_solution_response

logger = logging.getLogger(__name__)


class SolutionAgent(BaseAgent):
    """
    Agent responsible for generating the solution code, the reasoning behind
    it and its time/space complexity from the extracted problem.
    """
    def __init__(self, router: ModelRouter):
        super().__init__(name="Solution Agent", router=router)

    async def execute(self, context: StageContext) -> SolutionPayload:
        problem_info = context.problem_info
        if problem_info is None:
            logger.error("Problem info is missing for solution generation.")
            raise ProviderError(ErrorKind.GENERIC, "No problem info available")

        logger.info(f"Executing {self.name} in {context.language}.")
        prompt = self._create_solution_prompt(problem_info, context.language)
        response = await self.router.dispatch(prompt, [], Stage.SOLUTION, context.cancellation)

        solution = parse_solution_response(response)
        logger.info(f"Solution parsed: {len(solution.code.splitlines())} line(s) of code, {len(solution.thoughts)} thought(s).")
        return solution

    def _create_solution_prompt(self, problem_info: ProblemInfo, language: str) -> str:
        """Creates the prompt asking for the four labeled solution sections."""
        return f"""
Generate a detailed solution for the following coding problem:

PROBLEM STATEMENT:
{problem_info.problem_statement}

CONSTRAINTS:
{problem_info.constraints or "No specific constraints provided."}

EXAMPLE INPUT:
{problem_info.example_input or "No example input provided."}

EXAMPLE OUTPUT:
{problem_info.example_output or "No example output provided."}

LANGUAGE: {language}

I need the response in the following format:
1. Code: A clean, optimized implementation in {language}
2. Your Thoughts: A list of key insights and reasoning behind your approach
3. Time complexity: O(X) with a detailed explanation (at least 2 sentences)
4. Space complexity: O(X) with a detailed explanation (at least 2 sentences)

For complexity explanations, please be thorough. For example: "Time complexity: O(n) because we iterate through the array only once. This is optimal as we need to examine each element at least once to find the solution." or "Space complexity: O(n) because in the worst case, we store all elements in the hashmap. The additional space scales linearly with the input size."

Your solution should be efficient, well-commented, and handle edge cases.
"""
