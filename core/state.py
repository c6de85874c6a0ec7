from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.cancellation import CancellationToken


class Stage(str, Enum):
    """A single request/response cycle with its own prompt and parser."""
    EXTRACTION = "extraction"
    SOLUTION = "solution"
    DEBUGGING = "debugging"


class SessionStage(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    SOLVING = "solving"
    DEBUG_PREPARING = "debug_preparing"
    DEBUGGING = "debugging"


@dataclass(frozen=True)
class ProblemInfo:
    """Coding problem extracted from the screenshots."""
    problem_statement: str
    constraints: str = ""
    example_input: str = ""
    example_output: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class SolutionPayload:
    code: str
    thoughts: List[str]
    time_complexity: str
    space_complexity: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DebugPayload:
    code: str
    debug_analysis: str
    thoughts: List[str]
    time_complexity: str = "N/A"
    space_complexity: str = "N/A"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Screenshot:
    """A loaded screenshot: path, UI preview and base64 PNG payload."""
    path: str
    preview: str
    data: str


@dataclass
class StageContext:
    """Inputs handed to a stage agent."""
    language: str
    cancellation: Optional[CancellationToken] = None
    screenshots: List[Screenshot] = field(default_factory=list)
    problem_info: Optional[ProblemInfo] = None

    @property
    def images(self) -> List[str]:
        return [screenshot.data for screenshot in self.screenshots]


@dataclass
class ProcessingSession:
    """Transient state of the orchestrator; one handle per flow kind."""
    main_stage: SessionStage = SessionStage.IDLE
    debug_stage: SessionStage = SessionStage.IDLE
    processing_token: Optional[CancellationToken] = None
    debug_token: Optional[CancellationToken] = None
    solution: Optional[SolutionPayload] = None
    debug_result: Optional[DebugPayload] = None
