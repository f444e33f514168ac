import tomllib
from pathlib import Path

from conductor import __version__
from conductor.config import (
    ConductorConfig,
    deep_merge,
    dumps_toml,
    load_config,
    save_config,
    update_config_file,
    validate_config,
)


def test_defaults() -> None:
    config = ConductorConfig.default()

    assert config.timeouts.backend == 1800
    assert config.git.auto_commit is True
    assert config.git.branch_prefix == "compound/"
    assert config.dashboard.poll_interval_ms == 2000
    assert config.keybindings.dispatch_refine == "f"
    assert config.branches.default_template in config.branches.templates
    assert validate_config(config) == []


def test_config_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "conductor.toml"
    config = ConductorConfig.default()
    config.models.reviewer = "claude-opus"
    config.timeouts.tests = 600
    config.scopes.backend = ["app/**"]
    config.commands.test = "pytest -x"
    config.dispatch.agent_command = "claude"
    config.dispatch.stagger_seconds = 0.5

    save_config(path, config)
    loaded = load_config(path)

    assert loaded.models.reviewer == "claude-opus"
    assert loaded.timeouts.tests == 600
    assert loaded.scopes.backend == ["app/**"]
    assert loaded.commands.test == "pytest -x"
    assert loaded.commands.lint is None
    assert loaded.dispatch.agent_command == "claude"
    assert loaded.dispatch.stagger_seconds == 0.5
    assert loaded.branches.templates["hotfix"].prefix == "hotfix/"


def test_toml_dump_contains_sections() -> None:
    rendered = dumps_toml(ConductorConfig.default())
    parsed = tomllib.loads(rendered)

    for section in ("models", "timeouts", "scopes", "keybindings", "git", "dashboard", "dispatch"):
        assert f"[{section}]" in rendered
    assert "[branches.templates.compound]" in rendered
    assert parsed["branches"]["templates"]["feature"]["format"] == "{prefix}{slug}"


def test_layering_project_over_global_over_defaults(tmp_path: Path) -> None:
    global_path = tmp_path / "global.toml"
    project_path = tmp_path / "project.toml"
    global_path.write_text(
        '[models]\nplanner = "global-model"\nbackend = "global-model"\n'
        "[git]\nauto_commit = false\n",
        encoding="utf-8",
    )
    project_path.write_text('[models]\nbackend = "project-model"\n', encoding="utf-8")

    config = load_config(project_path, global_path)

    assert config.models.planner == "global-model"
    assert config.models.backend == "project-model"
    assert config.models.frontend == ConductorConfig().models.frontend
    assert config.git.auto_commit is False
    assert config.model_for("backend") == "project-model"


def test_unreadable_and_missing_files_fall_back(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("[models\n", encoding="utf-8")

    config = load_config(broken, tmp_path / "missing.toml")

    assert config == ConductorConfig.default()


def test_unknown_keys_ignored(tmp_path: Path) -> None:
    path = tmp_path / "conductor.toml"
    path.write_text(
        "[git]\nauto_commit = false\nsign_commits = true\n[extra]\nx = 1\n", encoding="utf-8"
    )

    assert load_config(path).git.auto_commit is False


def test_validate_config_reports_problems() -> None:
    config = ConductorConfig.default()
    config.timeouts.backend = -5
    config.scopes.tests = "tests/**"  # type: ignore[assignment]
    config.dashboard.poll_interval_ms = 100
    config.branches.default_template = "missing"

    problems = validate_config(config)

    assert "Invalid timeout for backend: must be positive number" in problems
    assert "Invalid scopes.tests: must be array of strings" in problems
    assert any("poll_interval_ms" in problem for problem in problems)
    assert any("default_template" in problem for problem in problems)



def test_validate_config_rejects_non_numeric_values() -> None:
    config = ConductorConfig.default()
    config.dashboard.poll_interval_ms = "fast"  # type: ignore[assignment]
    config.dashboard.web_port = "8080"  # type: ignore[assignment]
    config.dispatch.stagger_seconds = True

    problems = validate_config(config)

    assert any("poll_interval_ms" in problem for problem in problems)
    assert "Invalid web_port: must be an integer between 1 and 65535" in problems
    assert "Invalid stagger_seconds: must be a non-negative number" in problems


def test_incomplete_branch_template_is_skipped_and_reported(tmp_path: Path) -> None:
    path = tmp_path / "conductor.toml"
    path.write_text('[branches.templates.mine]\nprefix = "x/"\n', encoding="utf-8")

    config = load_config(path)

    assert "mine" not in config.branches.templates
    assert config.branches.templates["compound"].prefix == "compound/"
    assert config.branches.invalid_templates == ["mine"]
    assert (
        "Invalid branches.templates.mine: requires name, prefix and format"
        in validate_config(config)
    )


def test_branch_template_extra_keys_ignored_and_bad_format_reported() -> None:
    config = ConductorConfig.from_dict(
        {
            "branches": {
                "default_template": "release",
                "templates": {
                    "release": {
                        "name": "Release",
                        "prefix": "release/",
                        "format": "{prefix}{version}",
                        "color": "green",
                    }
                },
            }
        }
    )

    assert config.branches.templates["release"].name == "Release"
    assert "Invalid branches.templates.release.format: {prefix}{version}" in validate_config(
        config
    )


def test_branch_template_lookup_falls_back_to_git_prefix() -> None:
    config = ConductorConfig.default()
    config.git.branch_prefix = "work/"
    config.branches.default_template = "missing"

    template = config.branch_template()

    assert template is not None
    assert template.prefix == "work/"
    assert config.branch_template("hotfix").prefix == "hotfix/"
    assert config.branch_template("missing") is None


def test_update_config_file_merges(tmp_path: Path) -> None:
    path = tmp_path / "conductor.toml"
    path.write_text('[commands]\ntest = "pytest"\n', encoding="utf-8")

    update_config_file(path, {"commands": {"lint": "ruff check ."}})

    loaded = load_config(path)
    assert loaded.commands.test == "pytest"
    assert loaded.commands.lint == "ruff check ."


def test_deep_merge_skips_none() -> None:
    merged = deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": None, "c": 3}}, None)

    assert merged == {"a": {"b": 1, "c": 3}}


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
