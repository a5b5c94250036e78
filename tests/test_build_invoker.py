"""
Tests for the build invoker.

The "compiler" is a Python one-liner, so these run anywhere Python does.
"""

import threading
import time
from pathlib import Path

import pytest
from conftest import (
    FAIL_BUILD,
    NO_ARTIFACT,
    SLOW_BUILD,
    fake_invoker,
)

from agentify.compiler.build_invoker import BuildInvoker
from agentify.compiler.renderer import RenderedSourceTree
from agentify.config import Settings
from agentify.core.errors import BuildError
from agentify.core.record import CompilationRecord
from agentify.core.schema import (
    BuildTarget,
    IsolationLimits,
)


@pytest.fixture
def tree(tmp_path: Path) -> RenderedSourceTree:
    root = tmp_path / "src"
    root.mkdir()
    return RenderedSourceTree(
        root=root, target=BuildTarget.NATIVE_MODULE, files=("main.go",), manifest={}
    )


@pytest.fixture
def record() -> CompilationRecord:
    return CompilationRecord("req-1")


def test_build_success(tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path) -> None:
    """A zero exit with an artifact returns its path and streams output into the record."""

    output = tmp_path / "out" / "agent.so"

    artifact = fake_invoker().build(
        tree, BuildTarget.NATIVE_MODULE, IsolationLimits(), output, record
    )

    assert artifact == output.resolve()
    assert artifact.read_text() == "module"
    assert "compiling plugin" in record.messages()
    assert any(entry.source == "build" for entry in record.logs)


def test_build_nonzero_exit(
    tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path
) -> None:
    try:
        fake_invoker(FAIL_BUILD).build(
            tree, BuildTarget.NATIVE_MODULE, IsolationLimits(), tmp_path / "agent.so", record
        )
    except BuildError as exc:
        assert exc.reason == "exit_code"
        assert exc.exit_code == 3
        assert exc.last_lines == ["undefined: foo"]
    else:  # pragma: no cover
        raise AssertionError("BuildError was not raised")


def test_build_without_artifact(
    tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path
) -> None:
    with pytest.raises(BuildError, match="produced no artifact"):
        fake_invoker(NO_ARTIFACT).build(
            tree, BuildTarget.NATIVE_MODULE, IsolationLimits(), tmp_path / "agent.so", record
        )


def test_build_timeout(tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path) -> None:
    """A build that outlives its limit is killed close to the deadline."""

    isolation = IsolationLimits(time_limit_s=1)
    started = time.monotonic()
    try:
        fake_invoker(SLOW_BUILD).build(
            tree, BuildTarget.NATIVE_MODULE, isolation, tmp_path / "agent.so", record
        )
    except BuildError as exc:
        assert exc.timed_out
        assert exc.reason == "timeout"
    else:  # pragma: no cover
        raise AssertionError("BuildError was not raised")
    assert time.monotonic() - started < isolation.time_limit_s + 2


def test_default_floor_keeps_declared_limit(
    tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path
) -> None:
    """With shipped settings a short declared limit still governs the build."""

    floor = Settings().BUILD_TIMEOUT_FLOOR
    isolation = IsolationLimits(time_limit_s=1)

    assert BuildInvoker().timeout_for(isolation) <= isolation.time_limit_s + 2
    started = time.monotonic()
    with pytest.raises(BuildError, match="timed out"):
        fake_invoker(SLOW_BUILD, timeout_floor=floor).build(
            tree, BuildTarget.NATIVE_MODULE, isolation, tmp_path / "agent.so", record
        )
    assert time.monotonic() - started < isolation.time_limit_s + 2


def test_build_cancel(tree: RenderedSourceTree, record: CompilationRecord, tmp_path: Path) -> None:
    cancel_event = threading.Event()
    timer = threading.Timer(0.5, cancel_event.set)
    timer.start()
    started = time.monotonic()
    try:
        fake_invoker(SLOW_BUILD).build(
            tree,
            BuildTarget.NATIVE_MODULE,
            IsolationLimits(),
            tmp_path / "agent.so",
            record,
            cancel_event,
        )
    except BuildError as exc:
        assert exc.cancelled
        assert exc.reason == "cancelled"
    else:  # pragma: no cover
        raise AssertionError("BuildError was not raised")
    finally:
        timer.cancel()
    assert time.monotonic() - started < 10


def test_timeout_floor() -> None:
    invoker = fake_invoker(timeout_floor=30)

    assert invoker.timeout_for(IsolationLimits(time_limit_s=5)) == 30
    assert invoker.timeout_for(IsolationLimits(time_limit_s=90)) == 90


def test_extensions() -> None:
    invoker = fake_invoker()

    assert invoker.extension_for(BuildTarget.NATIVE_MODULE) == ".so"
    assert invoker.extension_for(BuildTarget.BYTECODE_MODULE) == ".wasm"


def test_builds_share_bounded_slots(tree: RenderedSourceTree, tmp_path: Path) -> None:
    """With one slot, the second build waits for the first instead of running beside it."""

    invoker = fake_invoker(max_concurrent=1)
    records = [CompilationRecord(f"req-{i}") for i in range(2)]
    errors = []

    def run(index: int) -> None:
        try:
            invoker.build(
                tree,
                BuildTarget.NATIVE_MODULE,
                IsolationLimits(),
                tmp_path / f"agent-{index}.so",
                records[index],
            )
        except BuildError as exc:  # pragma: no cover
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert not errors
    assert (tmp_path / "agent-0.so").exists()
    assert (tmp_path / "agent-1.so").exists()
