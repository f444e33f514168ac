from __future__ import annotations

from importlib import resources

from conductor.config import ConductorConfig, WorkerRole
from conductor.state.signals import signal_name

DEFAULT_TEST_COMMAND = "pytest -q"
DEFAULT_TYPECHECK_COMMAND = "mypy ."
DEFAULT_LINT_COMMAND = "ruff check ."


def format_scopes(scopes: list[str]) -> str:
    if not scopes:
        return "  - (no files in scope)"
    return "\n".join(f"  - {scope}" for scope in scopes)


class Worker:
    role: WorkerRole = "planner"
    prompt_file: str | None = None
    fallback_prompt: str = "You are a software worker."
    refinable: bool = False

    def __init__(self, config: ConductorConfig) -> None:
        self.config = config
        self.template = self._load_template()

    @property
    def signal(self) -> str:
        return signal_name(self.role)

    @property
    def refine_signal(self) -> str:
        return signal_name(self.role, refine=True)

    @property
    def model(self) -> str:
        return self.config.model_for(self.role)

    @property
    def timeout_seconds(self) -> float:
        return self.config.timeout_for(self.role)

    def _load_template(self) -> str:
        if not self.prompt_file:
            return self.fallback_prompt.strip()
        try:
            prompt_path = resources.files("conductor.prompts").joinpath(self.prompt_file)
            return prompt_path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, ModuleNotFoundError):
            return self.fallback_prompt.strip()

    def _placeholders(self) -> dict[str, str]:
        scopes = self.config.scopes
        commands = self.config.commands
        return {
            "{backendScopes}": format_scopes(scopes.backend),
            "{frontendScopes}": format_scopes(scopes.frontend),
            "{testsScopes}": format_scopes(scopes.tests),
            "{testCommand}": commands.test or DEFAULT_TEST_COMMAND,
            "{typecheckCommand}": commands.typecheck or DEFAULT_TYPECHECK_COMMAND,
            "{lintCommand}": commands.lint or DEFAULT_LINT_COMMAND,
        }

    def render(self) -> str:
        prompt = self.template
        for placeholder, value in self._placeholders().items():
            prompt = prompt.replace(placeholder, value)
        return prompt

    def build_prompt(self, *, refine: bool = False) -> str:
        prompt = self.render()
        if refine and self.refinable:
            return (
                f"{prompt}\n\n## REFINE MODE\n"
                "You are in REFINE mode. Read .workflow/REVIEW.md and fix the issues in your "
                "domain.\n"
                f"When done: touch .workflow/signals/{self.refine_signal}.done"
            )
        return f"{prompt}\nWhen done: touch .workflow/signals/{self.signal}.done"
