from __future__ import annotations

from conductor.workers.base import Worker


class FrontendWorker(Worker):
    role = "frontend"
    prompt_file = "frontend.md"
    refinable = True
    fallback_prompt = """
You are the FRONTEND worker.
Implement .workflow/tasks/frontend.md, touching only these paths:
{frontendScopes}
""".strip()
