from conductor.state.workspace import ConductorStateError, Workspace, sanitize_branch
from conductor.state.signals import FileSignalStore, MemorySignalStore, SignalStore
from conductor.state.error_log import WorkerError, WorkerErrorLog
from conductor.state.timeline import Timeline, TimelineEvent, TimelineSummary
from conductor.state.workflow import Phase, WorkflowState, WorkflowStateStore

__all__ = [
    "ConductorStateError",
    "FileSignalStore",
    "MemorySignalStore",
    "Phase",
    "SignalStore",
    "Timeline",
    "TimelineEvent",
    "TimelineSummary",
    "WorkerError",
    "WorkerErrorLog",
    "WorkflowState",
    "WorkflowStateStore",
    "Workspace",
    "sanitize_branch",
]
