from __future__ import annotations

from conductor.workers.base import Worker


class PlannerWorker(Worker):
    role = "planner"
    prompt_file = "planner.md"
    fallback_prompt = """
You are the PLANNER worker.
Write an implementation plan to .workflow/PLAN.md and per-worker task files.
""".strip()

    @property
    def signal(self) -> str:
        return "plan"

    def build_prompt(self, *, refine: bool = False) -> str:
        # The plan signal belongs to `conductor approve`, never to the planner.
        return (
            f"{self.render()}\n"
            "When the plan is ready: ask the user to review it and run `conductor approve`."
        )
