from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conductor.config import CommandsConfig, ScopesConfig

logger = logging.getLogger(__name__)

UNKNOWN_FRAMEWORK = "unknown"

# First match wins; a package.json framework outranks Python requirements.
NODE_FRAMEWORKS = ("next", "react", "express", "fastify", "hono", "vue", "svelte")
PYTHON_FRAMEWORKS = ("django", "flask", "fastapi")
FRAMEWORK_ALIASES = {"next": "nextjs"}

FRAMEWORK_SCOPES: dict[str, dict[str, list[str]]] = {
    "nextjs": {
        "backend": ["src/app/api/**", "src/lib/**", "prisma/**", "src/server/**"],
        "frontend": ["src/app/**", "src/components/**", "!src/app/api/**"],
        "tests": ["**/*.test.ts", "**/*.test.tsx", "**/*.spec.ts", "**/*.spec.tsx", "__tests__/**"],
    },
    "react": {
        "backend": ["src/api/**", "src/server/**", "src/services/**"],
        "frontend": ["src/components/**", "src/pages/**", "src/App.tsx", "src/main.tsx"],
        "tests": ["**/*.test.ts", "**/*.test.tsx", "src/**/__tests__/**"],
    },
    "express": {
        "backend": ["src/routes/**", "src/models/**", "src/middleware/**", "src/controllers/**"],
        "frontend": [],
        "tests": ["tests/**", "**/*.test.js", "**/*.spec.js"],
    },
    "fastify": {
        "backend": ["src/routes/**", "src/plugins/**", "src/schemas/**"],
        "frontend": [],
        "tests": ["test/**", "**/*.test.js", "**/*.test.ts"],
    },
    "hono": {
        "backend": ["src/routes/**", "src/handlers/**", "src/middleware/**"],
        "frontend": [],
        "tests": ["tests/**", "**/*.test.ts"],
    },
    "vue": {
        "backend": ["src/api/**", "src/server/**"],
        "frontend": ["src/components/**", "src/views/**", "src/App.vue"],
        "tests": ["tests/**", "**/*.spec.js", "**/*.test.js"],
    },
    "svelte": {
        "backend": ["src/api/**", "src/server/**"],
        "frontend": ["src/lib/**", "src/routes/**", "src/app.html"],
        "tests": ["tests/**", "**/*.test.ts", "**/*.spec.ts"],
    },
    "django": {
        "backend": ["*/views.py", "*/models.py", "*/urls.py", "*/forms.py"],
        "frontend": ["templates/**", "static/**"],
        "tests": ["*/tests.py", "tests/**"],
    },
    "flask": {
        "backend": ["app/**/*.py", "src/**/*.py"],
        "frontend": ["templates/**", "static/**"],
        "tests": ["tests/**"],
    },
    "fastapi": {
        "backend": ["app/**", "src/**"],
        "frontend": [],
        "tests": ["tests/**"],
    },
    "rust": {
        "backend": ["src/**"],
        "frontend": [],
        "tests": ["tests/**", "src/**/*.rs"],
    },
    "go": {
        "backend": ["*.go", "cmd/**", "pkg/**", "internal/**"],
        "frontend": [],
        "tests": ["**/*_test.go"],
    },
    "rails": {
        "backend": ["app/models/**", "app/controllers/**", "app/services/**", "config/routes.rb"],
        "frontend": ["app/views/**", "app/assets/**"],
        "tests": ["test/**", "spec/**"],
    },
    UNKNOWN_FRAMEWORK: {
        "backend": ["src/**", "lib/**", "server/**"],
        "frontend": ["src/**", "client/**", "ui/**"],
        "tests": ["tests/**", "test/**", "**/*.test.*", "**/*.spec.*"],
    },
}

NODE_TEST_RUNNERS = (
    ("vitest", "vitest"),
    ("jest", "jest"),
    ("mocha", "mocha"),
    ("tap", "tap"),
    ("ava", "ava"),
    ("playwright", "playwright test"),
    ("cypress", "cypress run"),
)
NODE_LINTERS = (
    ("@biomejs/biome", "biome check ."),
    ("biome", "biome check ."),
    ("eslint", "eslint ."),
    ("prettier", "prettier --check ."),
    ("standard", "standard"),
    ("xo", "xo"),
)
PYTHON_LINTERS = (("ruff", "ruff check ."), ("flake8", "flake8"), ("pylint", "pylint ."))
PYTHON_TYPECHECKERS = (("mypy", "mypy ."), ("pyright", "pyright"))
LINT_SCRIPTS = ("lint", "lint:check", "check:lint", "eslint")
TYPECHECK_SCRIPTS = ("typecheck", "check:types", "tsc")
MANIFEST_FILES = (
    "package.json",
    "pyproject.toml",
    "requirements.txt",
    "Cargo.toml",
    "go.mod",
    "Gemfile",
)


@dataclass(slots=True)
class ProjectAnalysis:
    framework: str
    scopes: ScopesConfig
    commands: CommandsConfig
    sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "framework": self.framework,
            "scopes": {
                "backend": list(self.scopes.backend),
                "frontend": list(self.scopes.frontend),
                "tests": list(self.scopes.tests),
            },
            "commands": {
                "test": self.commands.test,
                "lint": self.commands.lint,
                "typecheck": self.commands.typecheck,
            },
        }


class ProjectDetector:
    """Sniffs manifest files in ``root`` to suggest scopes and commands."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def _read(self, name: str) -> str | None:
        path = self.root / name
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    def package_json(self) -> dict[str, Any] | None:
        raw = self._read("package.json")
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.debug("Ignoring malformed package.json: %s", exc)
            return None
        return payload if isinstance(payload, dict) else None

    @staticmethod
    def _node_dependencies(pkg: dict[str, Any] | None) -> set[str]:
        if not pkg:
            return set()
        names: set[str] = set()
        for key in ("dependencies", "devDependencies"):
            section = pkg.get(key)
            if isinstance(section, dict):
                names.update(str(name) for name in section)
        return names

    @staticmethod
    def _node_scripts(pkg: dict[str, Any] | None) -> dict[str, str]:
        scripts = (pkg or {}).get("scripts")
        if not isinstance(scripts, dict):
            return {}
        return {str(key): str(value) for key, value in scripts.items() if value}

    def python_requirements(self) -> str:
        """Lower-cased text of every Python dependency manifest found."""
        chunks: list[str] = []
        for name in ("requirements.txt", "requirements-dev.txt", "Pipfile"):
            content = self._read(name)
            if content:
                chunks.append(content)
        pyproject = self._read("pyproject.toml")
        if pyproject:
            try:
                data = tomllib.loads(pyproject)
            except tomllib.TOMLDecodeError as exc:
                logger.debug("Ignoring malformed pyproject.toml: %s", exc)
            else:
                project = data.get("project", {})
                chunks.extend(str(item) for item in project.get("dependencies", []))
                for extra in project.get("optional-dependencies", {}).values():
                    chunks.extend(str(item) for item in extra)
                chunks.extend(str(key) for key in data.get("tool", {}))
        return "\n".join(chunks).lower()

    def detect_framework(self) -> str:
        dependencies = self._node_dependencies(self.package_json())
        for name in NODE_FRAMEWORKS:
            if name in dependencies:
                return FRAMEWORK_ALIASES.get(name, name)
        requirements = self.python_requirements()
        for name in PYTHON_FRAMEWORKS:
            if name in requirements:
                return name
        if (self.root / "Cargo.toml").is_file():
            return "rust"
        if (self.root / "go.mod").is_file():
            return "go"
        gemfile = self._read("Gemfile")
        if gemfile and "rails" in gemfile:
            return "rails"
        return UNKNOWN_FRAMEWORK

    def _node_commands(self, pkg: dict[str, Any]) -> CommandsConfig:
        dependencies = self._node_dependencies(pkg)
        scripts = self._node_scripts(pkg)

        test = scripts.get("test")
        if test is None:
            test = next(
                (command for dep, command in NODE_TEST_RUNNERS if dep in dependencies), "npm test"
            )

        lint = next((scripts[key] for key in LINT_SCRIPTS if key in scripts), None)
        if lint is None:
            lint = next((command for dep, command in NODE_LINTERS if dep in dependencies), None)

        typecheck = next((scripts[key] for key in TYPECHECK_SCRIPTS if key in scripts), None)
        if typecheck is None and "typescript" in dependencies:
            typecheck = "tsc --noEmit"
        return CommandsConfig(test=test, lint=lint, typecheck=typecheck)

    def _python_commands(self, requirements: str) -> CommandsConfig:
        test = "pytest" if "pytest" in requirements or (self.root / "tests").is_dir() else None
        lint = next((command for dep, command in PYTHON_LINTERS if dep in requirements), None)
        typecheck = next(
            (command for dep, command in PYTHON_TYPECHECKERS if dep in requirements), None
        )
        return CommandsConfig(test=test, lint=lint, typecheck=typecheck)

    def detect_commands(self) -> CommandsConfig:
        pkg = self.package_json()
        if pkg is not None:
            return self._node_commands(pkg)
        requirements = self.python_requirements()
        if requirements:
            return self._python_commands(requirements)
        if (self.root / "Cargo.toml").is_file():
            return CommandsConfig(test="cargo test", lint="cargo clippy", typecheck="cargo check")
        if (self.root / "go.mod").is_file():
            return CommandsConfig(
                test="go test ./...", lint="go vet ./...", typecheck="go build ./..."
            )
        return CommandsConfig()

    def analyze(self) -> ProjectAnalysis:
        framework = self.detect_framework()
        scopes = FRAMEWORK_SCOPES.get(framework, FRAMEWORK_SCOPES[UNKNOWN_FRAMEWORK])
        sources = [
            name
            for name in MANIFEST_FILES
            if (self.root / name).is_file()
        ]
        return ProjectAnalysis(
            framework=framework,
            scopes=ScopesConfig(
                backend=list(scopes["backend"]),
                frontend=list(scopes["frontend"]),
                tests=list(scopes["tests"]),
            ),
            commands=self.detect_commands(),
            sources=sources,
        )


def analyze_project(root: Path) -> ProjectAnalysis:
    return ProjectDetector(root).analyze()
