"""Tests for settings and the execution environment derived from them."""

from pathlib import Path

from agentify.config import (
    ExecutionEnvironment,
    Settings,
)
from agentify.main import main


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "OUTPUT_DIR": str(tmp_path / "public" / "output"),
        "SERVERLESS_OUTPUT_DIR": str(tmp_path / "serverless"),
        "NETLIFY": None,
        "VERCEL": None,
        "AWS_LAMBDA_FUNCTION_NAME": None,
        "ENVIRONMENT": "development",
    }
    values.update(overrides)
    return Settings(**values)


def test_development_environment(tmp_path: Path) -> None:
    env = ExecutionEnvironment.from_settings(_settings(tmp_path))

    assert env.output_root == (tmp_path / "public" / "output").resolve()
    assert env.output_root.is_dir()
    assert env.allow_tool_install is True
    assert env.work_root == env.output_root / "work"
    assert env.log_root == env.output_root / "logs"


def test_production_disables_installs(tmp_path: Path) -> None:
    env = ExecutionEnvironment.from_settings(_settings(tmp_path, ENVIRONMENT="Production"))

    assert env.allow_tool_install is False


def test_serverless_writes_to_tmp_dir(tmp_path: Path) -> None:
    """Any one serverless indicator moves the output under the serverless directory."""

    for indicator in ("NETLIFY", "VERCEL", "AWS_LAMBDA_FUNCTION_NAME"):
        config = _settings(tmp_path, **{indicator: "1"})

        assert config.is_serverless
        assert ExecutionEnvironment.from_settings(config).output_root == (
            tmp_path / "serverless"
        ).resolve()


def test_unwritable_output_falls_back(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    env = ExecutionEnvironment.from_settings(_settings(tmp_path, OUTPUT_DIR=str(blocker / "out")))

    assert env.output_root == (tmp_path / "serverless").resolve()


def test_main_requires_config_for_compile() -> None:
    try:
        main(["--mode", "compile"])
    except SystemExit as exc:
        assert exc.code == 2
    else:  # pragma: no cover
        raise AssertionError("SystemExit was not raised")
