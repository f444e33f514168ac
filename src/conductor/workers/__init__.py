from conductor.config import ConductorConfig, WorkerRole
from conductor.workers.backend import BackendWorker
from conductor.workers.base import Worker
from conductor.workers.frontend import FrontendWorker
from conductor.workers.planner import PlannerWorker
from conductor.workers.reviewer import ReviewerWorker
from conductor.workers.tester import TestsWorker

WORKER_CLASSES: dict[str, type[Worker]] = {
    "planner": PlannerWorker,
    "backend": BackendWorker,
    "frontend": FrontendWorker,
    "tests": TestsWorker,
    "reviewer": ReviewerWorker,
}


def build_workers(config: ConductorConfig) -> dict[WorkerRole, Worker]:
    return {role: cls(config) for role, cls in WORKER_CLASSES.items()}  # type: ignore[misc]


__all__ = [
    "BackendWorker",
    "FrontendWorker",
    "PlannerWorker",
    "ReviewerWorker",
    "TestsWorker",
    "WORKER_CLASSES",
    "Worker",
    "build_workers",
]
