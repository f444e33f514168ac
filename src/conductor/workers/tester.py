from __future__ import annotations

from conductor.workers.base import Worker


class TestsWorker(Worker):
    __test__ = False

    role = "tests"
    prompt_file = "tests.md"
    refinable = True
    fallback_prompt = """
You are the TESTS worker.
Write tests for .workflow/tasks/tests.md in these paths:
{testsScopes}
Run: {testCommand}
""".strip()
