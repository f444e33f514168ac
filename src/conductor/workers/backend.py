from __future__ import annotations

from conductor.workers.base import Worker


class BackendWorker(Worker):
    role = "backend"
    prompt_file = "backend.md"
    refinable = True
    fallback_prompt = """
You are the BACKEND worker.
Implement .workflow/tasks/backend.md, touching only these paths:
{backendScopes}
""".strip()
