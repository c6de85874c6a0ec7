import argparse
import asyncio
import json
import logging
from logging.handlers import RotatingFileHandler

from core.config import PROVIDERS, ConfigSource, load_settings
from core.orchestrator import ProcessingOrchestrator
from interfaces.app_state import AppState
from interfaces.screenshot_store import ScreenshotQueue
from interfaces.status_sink import LoggingStatusSink

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console Handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)

    # File Handler (Rotating): 1MB per file, 3 backups
    file_handler = RotatingFileHandler('snapsolve.log', maxBytes=1024*1024, backupCount=3)
    file_handler.setFormatter(log_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SnapSolve: extract, solve and debug coding problems from screenshots.")
    parser.add_argument("screenshots", nargs="+", help="Screenshots of the coding problem.")
    parser.add_argument("--debug", nargs="+", default=[], metavar="SCREENSHOT",
                        help="Extra screenshots (code, errors, failing tests) for a debugging pass.")
    parser.add_argument("--provider", choices=PROVIDERS, help="AI provider (overrides API_PROVIDER).")
    parser.add_argument("--language", help="Preferred solution language (overrides LANGUAGE).")
    parser.add_argument("--env-file", help="Path to a .env file.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def print_summary(orchestrator: ProcessingOrchestrator) -> None:
    problem_info = orchestrator.app_state.get_problem_info()
    solution = orchestrator.session.solution
    debug_result = orchestrator.session.debug_result

    print("\n--- SnapSolve Run Summary ---")
    if problem_info:
        print("\n--- Problem ---")
        print(json.dumps(problem_info.to_dict(), indent=2))
    if solution:
        print("\n--- Solution ---")
        print(solution.code)
        print("\nThoughts:")
        for thought in solution.thoughts:
            print(f"- {thought}")
        print(f"\nTime complexity: {solution.time_complexity}")
        print(f"Space complexity: {solution.space_complexity}")
    if debug_result:
        print("\n--- Debug Analysis ---")
        print(debug_result.debug_analysis)
    if not solution:
        print("\nNo solution generated. See the log for details.")


async def run(args: argparse.Namespace) -> ProcessingOrchestrator:
    settings = load_settings(args.env_file)
    config = ConfigSource(settings)

    screenshots = ScreenshotQueue(args.screenshots)
    app_state = AppState()
    orchestrator = ProcessingOrchestrator(config, screenshots, LoggingStatusSink(), app_state)
    config.subscribe(lambda _: orchestrator.reinitialize_client())

    overrides = {}
    if args.provider:
        overrides["api_provider"] = args.provider
    if args.language:
        overrides["language"] = args.language
    if overrides:
        config.update(**overrides)

    try:
        await orchestrator.process_screenshots()

        if args.debug and app_state.get_view() == "solutions":
            for path in args.debug:
                screenshots.add_extra_screenshot(path)
            await orchestrator.process_screenshots()
    except asyncio.CancelledError:
        orchestrator.cancel_ongoing_requests()
        raise
    return orchestrator


def main():
    args = build_parser().parse_args()
    configure_logging(args.verbose)

    try:
        orchestrator = asyncio.run(run(args))
        print_summary(orchestrator)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Ongoing requests canceled.")
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"Error: {e}")
    except Exception as e:
        logger.critical(f"A critical error occurred during execution: {e}", exc_info=True)
        print(f"\nAn unexpected error stopped the process: {e}")
    finally:
        logger.info("SnapSolve finished.")


if __name__ == "__main__":
    main()
