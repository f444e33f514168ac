from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

WorkerRole = Literal["planner", "backend", "frontend", "tests", "reviewer"]
WORKER_ROLES: tuple[WorkerRole, ...] = ("planner", "backend", "frontend", "tests", "reviewer")
DOMAIN_ROLES: tuple[WorkerRole, ...] = ("backend", "frontend", "tests")

DEFAULT_MODEL = "claude-sonnet-4-5"
MIN_POLL_INTERVAL_MS = 500
DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_STAGGER_SECONDS = 0.3
COMPOUND_BRANCH_FORMAT = "{prefix}{date}-{slug}"


@dataclass(slots=True)
class ModelsConfig:
    planner: str = DEFAULT_MODEL
    backend: str = DEFAULT_MODEL
    frontend: str = DEFAULT_MODEL
    tests: str = DEFAULT_MODEL
    reviewer: str = DEFAULT_MODEL


@dataclass(slots=True)
class TimeoutsConfig:
    planner: float = 1800
    backend: float = 1800
    frontend: float = 1800
    tests: float = 1800
    reviewer: float = 1800


@dataclass(slots=True)
class ScopesConfig:
    backend: list[str] = field(
        default_factory=lambda: ["src/api/**", "src/lib/**", "src/server/**"]
    )
    frontend: list[str] = field(
        default_factory=lambda: ["src/components/**", "src/app/**", "src/pages/**"]
    )
    tests: list[str] = field(
        default_factory=lambda: ["**/*.test.ts", "**/*.spec.ts", "tests/**"]
    )


@dataclass(slots=True)
class CommandsConfig:
    test: str | None = None
    lint: str | None = None
    typecheck: str | None = None


@dataclass(slots=True)
class KeybindingsConfig:
    dispatch_plan: str = "p"
    dispatch_review: str = "r"
    dispatch_refine: str = "f"
    dispatch_compound: str = "c"
    create_pr: str = "g"
    commit_checkpoint: str = "k"
    refresh_status: str = "s"
    new_feature: str = "n"
    quit: str = "q"


@dataclass(slots=True)
class GitConfig:
    auto_commit: bool = True
    branch_prefix: str = "compound/"


@dataclass(slots=True)
class DashboardConfig:
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    web_port: int = 8080
    enable_browser: bool = False


@dataclass(slots=True)
class DispatchConfig:
    session_name: str = "conductor"
    agent_command: str = "opencode"
    stagger_seconds: float = DEFAULT_STAGGER_SECONDS


@dataclass(slots=True)
class BranchTemplate:
    name: str
    prefix: str
    format: str
    description: str = ""


def _default_templates() -> dict[str, BranchTemplate]:
    return {
        "compound": BranchTemplate(
            name="Compound Feature",
            prefix="compound/",
            format=COMPOUND_BRANCH_FORMAT,
            description="Standard compound workflow branch",
        ),
        "feature": BranchTemplate(
            name="Feature Branch",
            prefix="feature/",
            format="{prefix}{slug}",
            description="Standard feature development",
        ),
        "hotfix": BranchTemplate(
            name="Hotfix",
            prefix="hotfix/",
            format="{prefix}{slug}",
            description="Emergency production fix",
        ),
    }


@dataclass(slots=True)
class BranchesConfig:
    default_template: str = "compound"
    templates: dict[str, BranchTemplate] = field(default_factory=_default_templates)
    invalid_templates: list[str] = field(default_factory=list, compare=False, repr=False)


def _templates(data: Any) -> tuple[dict[str, BranchTemplate], list[str]]:
    if not isinstance(data, dict):
        return _default_templates(), []
    known = {item.name for item in fields(BranchTemplate)}
    required = {"name", "prefix", "format"}
    templates: dict[str, BranchTemplate] = {}
    invalid: list[str] = []
    for key, value in data.items():
        if not isinstance(value, dict) or not required <= set(value):
            logger.warning("Skipping incomplete branch template %s", key)
            invalid.append(key)
            continue
        templates[key] = BranchTemplate(**{k: str(v) for k, v in value.items() if k in known})
    return templates, invalid


def is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def number_or(value: object, default: float) -> float:
    return float(value) if is_number(value) else default


def _section(cls: type, data: Any) -> Any:
    if not isinstance(data, dict):
        return cls()
    known = {item.name for item in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.debug("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(unknown))
    return cls(**{key: value for key, value in data.items() if key in known})


def _section_dict(section: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for item in fields(section):
        value = getattr(section, item.name)
        payload[item.name] = list(value) if isinstance(value, list) else value
    return payload


@dataclass(slots=True)
class ConductorConfig:
    models: ModelsConfig = field(default_factory=ModelsConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    scopes: ScopesConfig = field(default_factory=ScopesConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    keybindings: KeybindingsConfig = field(default_factory=KeybindingsConfig)
    git: GitConfig = field(default_factory=GitConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    branches: BranchesConfig = field(default_factory=BranchesConfig)

    @classmethod
    def default(cls) -> ConductorConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> ConductorConfig:
        branches_data = data.get("branches", {})
        if not isinstance(branches_data, dict):
            branches_data = {}
        templates, invalid = _templates(branches_data.get("templates"))
        return cls(
            models=_section(ModelsConfig, data.get("models", {})),
            timeouts=_section(TimeoutsConfig, data.get("timeouts", {})),
            scopes=_section(ScopesConfig, data.get("scopes", {})),
            commands=_section(CommandsConfig, data.get("commands", {})),
            keybindings=_section(KeybindingsConfig, data.get("keybindings", {})),
            git=_section(GitConfig, data.get("git", {})),
            dashboard=_section(DashboardConfig, data.get("dashboard", {})),
            dispatch=_section(DispatchConfig, data.get("dispatch", {})),
            branches=BranchesConfig(
                default_template=str(branches_data.get("default_template", "compound")),
                templates=templates,
                invalid_templates=invalid,
            ),
        )

    def to_dict(self) -> dict:
        return {
            "models": _section_dict(self.models),
            "timeouts": _section_dict(self.timeouts),
            "scopes": _section_dict(self.scopes),
            "commands": _section_dict(self.commands),
            "keybindings": _section_dict(self.keybindings),
            "git": _section_dict(self.git),
            "dashboard": _section_dict(self.dashboard),
            "dispatch": _section_dict(self.dispatch),
            "branches": {
                "default_template": self.branches.default_template,
                "templates": {
                    key: _section_dict(template)
                    for key, template in self.branches.templates.items()
                },
            },
        }

    def model_for(self, role: WorkerRole) -> str:
        return getattr(self.models, role, None) or DEFAULT_MODEL

    def timeout_for(self, role: WorkerRole) -> float:
        return getattr(self.timeouts, role, None) or TimeoutsConfig().planner

    def branch_template(self, name: str | None = None) -> BranchTemplate | None:
        if name is not None:
            return self.branches.templates.get(name)
        return self.branches.templates.get(self.branches.default_template) or BranchTemplate(
            name="Compound Feature",
            prefix=self.git.branch_prefix,
            format=COMPOUND_BRANCH_FORMAT,
        )


def deep_merge(base: dict[str, Any], *overrides: dict[str, Any] | None) -> dict[str, Any]:
    result = dict(base)
    for override in overrides:
        if not override:
            continue
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = deep_merge(result[key], value)
            elif value is not None:
                result[key] = value
    return result


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def _dump_table(name: str, table: dict[str, Any], lines: list[str]) -> None:
    scalars = [(key, value) for key, value in table.items() if not isinstance(value, dict)]
    nested = [(key, value) for key, value in table.items() if isinstance(value, dict)]
    lines.append(f"[{name}]")
    for key, value in scalars:
        if value is None:
            continue
        lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")
    for key, value in nested:
        _dump_table(f"{name}.{key}", value, lines)


def dumps_toml(config: ConductorConfig | dict[str, Any]) -> str:
    data = config.to_dict() if isinstance(config, ConductorConfig) else config
    lines: list[str] = []
    for section, table in data.items():
        if isinstance(table, dict):
            _dump_table(section, table, lines)
    return "\n".join(lines).strip() + "\n"


def global_config_path() -> Path:
    return Path.home() / ".config" / "conductor" / "config.toml"


def _load_toml(path: Path | None) -> dict[str, Any]:
    if path is None or not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def load_config(project_path: Path | None, global_path: Path | None = None) -> ConductorConfig:
    merged = deep_merge(
        ConductorConfig.default().to_dict(),
        _load_toml(global_path),
        _load_toml(project_path),
    )
    return ConductorConfig.from_dict(merged)


def save_config(path: Path, config: ConductorConfig | dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")


def update_config_file(path: Path, overrides: dict[str, Any]) -> None:
    save_config(path, deep_merge(_load_toml(path), overrides))


def validate_config(config: ConductorConfig) -> list[str]:
    errors: list[str] = []
    for role in WORKER_ROLES:
        timeout = getattr(config.timeouts, role)
        if not is_number(timeout) or timeout <= 0:
            errors.append(f"Invalid timeout for {role}: must be positive number")
    for scope in DOMAIN_ROLES:
        patterns = getattr(config.scopes, scope)
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            errors.append(f"Invalid scopes.{scope}: must be array of strings")
    poll = config.dashboard.poll_interval_ms
    if not is_number(poll) or poll < MIN_POLL_INTERVAL_MS:
        errors.append(
            f"Invalid poll_interval_ms: must be a number of at least {MIN_POLL_INTERVAL_MS}ms"
        )
    port = config.dashboard.web_port
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        errors.append("Invalid web_port: must be an integer between 1 and 65535")
    stagger = config.dispatch.stagger_seconds
    if not is_number(stagger) or stagger < 0:
        errors.append("Invalid stagger_seconds: must be a non-negative number")
    for key in config.branches.invalid_templates:
        errors.append(f"Invalid branches.templates.{key}: requires name, prefix and format")
    for key, template in config.branches.templates.items():
        try:
            template.format.format(prefix=template.prefix, date="20250101", slug="x")
        except (KeyError, IndexError, ValueError):
            errors.append(f"Invalid branches.templates.{key}.format: {template.format}")
    if config.branches.default_template not in config.branches.templates:
        errors.append(
            f"Unknown branches.default_template: {config.branches.default_template}"
        )
    return errors
