from __future__ import annotations

from conductor.workers.base import Worker


class ReviewerWorker(Worker):
    role = "reviewer"
    prompt_file = "reviewer.md"
    fallback_prompt = """
You are the REVIEWER worker.
Review the implementation and write .workflow/REVIEW.md starting with
STATUS: PASS, STATUS: PASS_WITH_WARNINGS or STATUS: FAIL.
""".strip()

    @property
    def signal(self) -> str:
        return "review"
