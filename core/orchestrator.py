import asyncio
import base64
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from agents.base_agent import BaseAgent
from agents.debugging_agent import DebuggingAgent
from agents.problem_extractor import ProblemExtractorAgent
from agents.solution_agent import SolutionAgent
from core.config import ConfigSource
from core.router import ModelRouter
from core.state import ProcessingSession, Screenshot, SessionStage, StageContext
from interfaces.app_state import AppState
from interfaces.screenshot_store import ScreenshotStore
from interfaces.status_sink import ProcessingEvent, StatusSink
from utils.cancellation import CancellationToken
from utils.errors import ErrorKind, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "python"
# Error texts that point at a credential problem rather than a processing one
CREDENTIAL_ERROR_MARKERS = ("API Key", "OpenAI", "Gemini")

MAIN_CANCELED_MESSAGE = "Processing was canceled by the user."
DEBUG_CANCELED_MESSAGE = "Extra processing was canceled by the user."
SERVER_ERROR_MESSAGE = "Server error. Please try again."


def _read_base64(path: str) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("utf-8")


class ProcessingOrchestrator:
    """
    Drives the two screenshot flows:

    Main:  extract problem -> generate solution -> switch to the solutions view.
    Debug: merge problem + extra screenshots -> debugging analysis.

    Each flow owns one CancellationToken for its lifetime; `cancel_ongoing_requests`
    aborts whichever are set. ProblemInfo is only stored after a successful
    extraction parse.
    """
    def __init__(
        self,
        config: ConfigSource,
        screenshots: ScreenshotStore,
        status_sink: StatusSink,
        app_state: AppState,
        router: Optional[ModelRouter] = None,
    ):
        self.config = config
        self.screenshots = screenshots
        self.status_sink = status_sink
        self.app_state = app_state
        self.session = ProcessingSession()

        self.router = router or ModelRouter(status_sink)
        self.reinitialize_client()

        self.agents: Dict[str, BaseAgent] = {
            "extractor": ProblemExtractorAgent(self.router),
            "solver": SolutionAgent(self.router),
            "debugger": DebuggingAgent(self.router),
        }
        logger.info("Orchestrator initialized with agents: %s", list(self.agents.keys()))

    def reinitialize_client(self) -> None:
        """Rebuilds the provider adapter from the current configuration snapshot."""
        self.router.configure(self.config.snapshot())

    def get_language(self) -> str:
        return self.config.snapshot().language or DEFAULT_LANGUAGE

    async def process_screenshots(self) -> None:
        """Runs the main flow from the queue view, the debug flow otherwise."""
        if not self.router.has_client:
            self.reinitialize_client()
            if not self.router.has_client:
                logger.error(f"{self.config.snapshot().api_provider} client not initialized.")
                self.status_sink.emit(ProcessingEvent.API_KEY_INVALID)
                return

        view = self.app_state.get_view()
        logger.info(f"Processing screenshots in view: {view}")
        if view == "queue":
            await self.run_main_flow()
        else:
            await self.run_debug_flow()

    async def run_main_flow(self) -> None:
        self.status_sink.emit(ProcessingEvent.INITIAL_START)
        queue = self.screenshots.list_primary_queue()
        logger.info(f"Processing main queue screenshots: {queue}")

        existing = self._existing_paths(queue)
        if not existing:
            logger.info("No screenshots found in queue.")
            self.status_sink.emit(ProcessingEvent.NO_SCREENSHOTS)
            return

        token = CancellationToken()
        self.session.processing_token = token
        try:
            loaded = await self._load_screenshots(existing, "Failed to load screenshot data")
            language = self.get_language()

            self.session.main_stage = SessionStage.EXTRACTING
            problem_info = await self.agents["extractor"].execute(
                StageContext(language=language, cancellation=token, screenshots=loaded)
            )
            self.status_sink.notify("Problem analyzed successfully. Preparing to generate solution...", 40)
            self.app_state.set_problem_info(problem_info)
            self.status_sink.emit(ProcessingEvent.PROBLEM_EXTRACTED, problem_info)

            self.session.main_stage = SessionStage.SOLVING
            solution = await self.agents["solver"].execute(
                StageContext(language=language, cancellation=token, problem_info=problem_info)
            )

            # A fresh solution invalidates any pending debug screenshots
            self.screenshots.clear_secondary_queue()
            self.session.solution = solution
            self.status_sink.notify("Solution generated successfully", 100)
            self.status_sink.emit(ProcessingEvent.SOLUTION_SUCCESS, solution)
            logger.info("Setting view to solutions after successful processing.")
            self.app_state.set_view("solutions")
        except ProviderError as e:
            logger.warning(f"Processing failed ({e.kind.value}): {e.message}")
            self._report_main_failure(e)
        except Exception as e:
            logger.error(f"An unexpected error occurred while processing screenshots: {e}", exc_info=True)
            self._report_main_failure(ProviderError(ErrorKind.GENERIC, str(e) or SERVER_ERROR_MESSAGE))
        finally:
            if self.session.processing_token is token:
                self.session.processing_token = None
            self.session.main_stage = SessionStage.IDLE

    async def run_debug_flow(self) -> None:
        extra_queue = self.screenshots.list_secondary_queue()
        logger.info(f"Processing extra queue screenshots: {extra_queue}")

        existing_extra = self._existing_paths(extra_queue)
        if not existing_extra:
            logger.info("No extra screenshots found in queue.")
            self.status_sink.emit(ProcessingEvent.NO_SCREENSHOTS)
            return

        self.status_sink.emit(ProcessingEvent.DEBUG_START)
        token = CancellationToken()
        self.session.debug_token = token
        try:
            self.session.debug_stage = SessionStage.DEBUG_PREPARING
            problem_info = self.app_state.get_problem_info()
            if problem_info is None:
                raise ProviderError(ErrorKind.GENERIC, "No problem info available")

            all_paths = [*self.screenshots.list_primary_queue(), *existing_extra]
            loaded = await self._load_screenshots(all_paths, "Failed to load screenshot data for debugging")
            logger.info(f"Combined screenshots for processing: {[s.path for s in loaded]}")

            self.status_sink.notify("Processing debug screenshots...", 30)
            self.session.debug_stage = SessionStage.DEBUGGING
            result = await self.agents["debugger"].execute(
                StageContext(
                    language=self.get_language(),
                    cancellation=token,
                    screenshots=loaded,
                    problem_info=problem_info,
                )
            )
            self.status_sink.notify("Debug analysis complete", 100)

            self.session.debug_result = result
            self.app_state.set_has_debugged(True)
            self.status_sink.emit(ProcessingEvent.DEBUG_SUCCESS, result)
        except ProviderError as e:
            logger.warning(f"Debug processing failed ({e.kind.value}): {e.message}")
            message = DEBUG_CANCELED_MESSAGE if e.kind is ErrorKind.CANCELED else e.message
            self.status_sink.emit(ProcessingEvent.DEBUG_ERROR, message)
        except Exception as e:
            logger.error(f"An unexpected error occurred during debug processing: {e}", exc_info=True)
            self.status_sink.emit(ProcessingEvent.DEBUG_ERROR, str(e) or SERVER_ERROR_MESSAGE)
        finally:
            if self.session.debug_token is token:
                self.session.debug_token = None
            self.session.debug_stage = SessionStage.IDLE

    def cancel_ongoing_requests(self) -> None:
        """Aborts both flows, clears ProblemInfo and the debug flag."""
        was_cancelled = False

        if self.session.processing_token is not None:
            self.session.processing_token.cancel()
            self.session.processing_token = None
            was_cancelled = True

        if self.session.debug_token is not None:
            self.session.debug_token.cancel()
            self.session.debug_token = None
            was_cancelled = True

        self.app_state.set_has_debugged(False)
        self.app_state.set_problem_info(None)

        if was_cancelled:
            logger.info("Ongoing requests canceled.")
            self.status_sink.emit(ProcessingEvent.NO_SCREENSHOTS)

    def _report_main_failure(self, error: ProviderError) -> None:
        if error.kind is ErrorKind.CANCELED:
            self.status_sink.emit(ProcessingEvent.INITIAL_SOLUTION_ERROR, MAIN_CANCELED_MESSAGE)
        elif self._is_credential_error(error.message):
            self.status_sink.emit(ProcessingEvent.API_KEY_INVALID)
        else:
            self.status_sink.emit(ProcessingEvent.INITIAL_SOLUTION_ERROR, error.message)
        logger.info("Resetting view to queue due to error.")
        self.app_state.set_view("queue")

    @staticmethod
    def _is_credential_error(message: str) -> bool:
        return any(marker in message for marker in CREDENTIAL_ERROR_MARKERS)

    @staticmethod
    def _existing_paths(paths: Sequence[str]) -> List[str]:
        return [path for path in paths if Path(path).exists()]

    async def _load_screenshots(self, paths: Sequence[str], failure_message: str) -> List[Screenshot]:
        """Reads all screenshots concurrently; unreadable files are dropped."""
        results = await asyncio.gather(*(self._load_screenshot(path) for path in paths))
        loaded = [screenshot for screenshot in results if screenshot is not None]
        if not loaded:
            raise ProviderError(ErrorKind.GENERIC, failure_message)
        return loaded

    async def _load_screenshot(self, path: str) -> Optional[Screenshot]:
        if not Path(path).exists():
            logger.warning(f"Screenshot file does not exist: {path}")
            return None
        try:
            preview = await asyncio.to_thread(self.screenshots.get_preview, path)
            data = await asyncio.to_thread(_read_base64, path)
        except Exception as e:
            # Pillow reports corrupt chunks as SyntaxError, not OSError
            logger.error(f"Error reading screenshot {path}: {e}")
            return None
        return Screenshot(path=path, preview=preview, data=data)
