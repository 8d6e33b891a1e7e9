from enum import Enum


class AnalysisState(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisState.COMPLETED, AnalysisState.FAILED)


# Legal state transitions; terminal states have none
ALLOWED_TRANSITIONS = {
    AnalysisState.DRAFT: {AnalysisState.RUNNING, AnalysisState.FAILED},
    AnalysisState.RUNNING: {AnalysisState.COMPLETED, AnalysisState.FAILED},
    AnalysisState.COMPLETED: set(),
    AnalysisState.FAILED: set(),
}
