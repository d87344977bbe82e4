"""Tests for persona_handover.handover.coordinator.HandoverCoordinator.

End-to-end scenarios run the stand-in persona from tests/fixtures against a
filesystem store in tmp_path.  Collaborator-level behaviour is checked with
an in-memory store and a fake command runner.
"""
from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import pytest

from persona_handover.config import HandoverConfig
from persona_handover.context.state import EncodingFormat, FileReference, PersonaContext, TaskStatus
from persona_handover.errors import (
    ChecksumMismatchError,
    HandoverTimeoutError,
    ProcessSpawnError,
    SecurityViolation,
)
from persona_handover.handover.coordinator import HandoverCoordinator, HandoverOptions
from persona_handover.process.orchestrator import PersonaProcessOrchestrator
from persona_handover.process.runner import CommandResult
from persona_handover.storage.base import checksum_path_for
from persona_handover.storage.filesystem import FilesystemContextStore
from persona_handover.storage.memory import InMemoryContextStore


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture()
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture()
def coordinator(store_dir: Path, stub_command: tuple[str, ...]) -> HandoverCoordinator:
    return HandoverCoordinator(
        FilesystemContextStore(store_dir),
        orchestrator=PersonaProcessOrchestrator(command=stub_command),
    )


def _context(work_dir: Path, task: str = "analyze file") -> PersonaContext:
    ctx = PersonaContext.create(
        "data-expert", "analysis-expert", task, working_directory=work_dir
    )
    ctx.environment.timeout_ms = 30_000
    return ctx


def _store_files(store_dir: Path) -> list[str]:
    if not store_dir.exists():
        return []
    return sorted(path.name for path in store_dir.iterdir())


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class _FakeRunner:
    def __init__(self, result: CommandResult | None = None, error: Exception | None = None) -> None:
        self.result = result or CommandResult(0, "Created: output.csv\n", "", elapsed_ms=5)
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def __call__(self, argv: list[str], **kwargs: Any) -> CommandResult:
        self.calls.append({"argv": argv, **kwargs})
        if self.error is not None:
            raise self.error
        return self.result


def _memory_coordinator(runner: _FakeRunner) -> tuple[HandoverCoordinator, InMemoryContextStore]:
    store = InMemoryContextStore()
    coordinator = HandoverCoordinator(
        store, orchestrator=PersonaProcessOrchestrator(command=("persona-agent",), runner=runner)
    )
    return coordinator, store


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestHandoverEndToEnd:
    def test_successful_handover_cleans_up(
        self, coordinator: HandoverCoordinator, store_dir: Path, work_dir: Path
    ) -> None:
        result = coordinator.handover(_context(work_dir))

        assert result.status == TaskStatus.COMPLETED
        assert "output.csv" in result.artifacts
        assert result.execution_time_ms >= 0
        assert _store_files(store_dir) == []

    def test_timeout_kills_child_and_preserves_context(
        self,
        coordinator: HandoverCoordinator,
        store_dir: Path,
        work_dir: Path,
        tmp_path: Path,
    ) -> None:
        pid_file = tmp_path / "child.pid"
        ctx = _context(work_dir, task="sleep:5")
        ctx.environment.variables["STUB_PID_FILE"] = str(pid_file)

        start = time.monotonic()
        with pytest.raises(HandoverTimeoutError) as excinfo:
            coordinator.handover(ctx, HandoverOptions(timeout_ms=1_000))
        elapsed = time.monotonic() - start

        assert "Persona handover timeout after 1000ms" in str(excinfo.value)
        assert elapsed < 4.5
        context_path = excinfo.value.context_path
        assert context_path is not None
        assert context_path.exists()
        assert checksum_path_for(context_path).exists()
        assert str(context_path) in str(excinfo.value)
        assert not _pid_alive(int(pid_file.read_text()))

    def test_short_timeout_returns_promptly(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        ctx = _context(work_dir, task="sleep:2")
        start = time.monotonic()
        with pytest.raises(HandoverTimeoutError) as excinfo:
            coordinator.handover(ctx, HandoverOptions(timeout_ms=100))
        elapsed = time.monotonic() - start

        assert elapsed < 0.5
        context_path = excinfo.value.context_path
        assert context_path is not None
        assert context_path.exists()
        assert checksum_path_for(context_path).exists()

    def test_preserved_context_is_loadable(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        ctx = _context(work_dir, task="sleep:5")
        with pytest.raises(HandoverTimeoutError) as excinfo:
            coordinator.handover(ctx, HandoverOptions(timeout_ms=500))
        assert excinfo.value.context_path is not None
        loaded = coordinator.load_context(excinfo.value.context_path)
        assert loaded.context_id == ctx.context_id

    def test_altered_checksum_detected_on_load(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        path = coordinator.create_context(_context(work_dir))
        checksum_path_for(path).write_text("f" * 64)
        with pytest.raises(ChecksumMismatchError):
            coordinator.load_context(path)

    def test_tampered_payload_detected_on_load(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        path = coordinator.create_context(_context(work_dir))
        data = bytearray(path.read_bytes())
        data[len(data) // 2] ^= 0xFF
        path.write_bytes(bytes(data))
        with pytest.raises(ChecksumMismatchError):
            coordinator.load_context(path)

    def test_insecure_path_rejected_before_anything_is_written(
        self, coordinator: HandoverCoordinator, store_dir: Path, work_dir: Path
    ) -> None:
        ctx = _context(work_dir)
        ctx.artifacts.files.append(FileReference(path="../secret"))
        with pytest.raises(SecurityViolation):
            coordinator.handover(ctx)
        assert _store_files(store_dir) == []

    def test_oversized_file_rejected(
        self, store_dir: Path, work_dir: Path, stub_command: tuple[str, ...]
    ) -> None:
        config = HandoverConfig(store_dir=store_dir, max_file_size=100, persona_command=stub_command)
        coordinator = HandoverCoordinator.from_config(config)
        ctx = _context(work_dir)
        ctx.artifacts.files.append(FileReference(path="big.bin", size=101))
        with pytest.raises(SecurityViolation, match="File too large"):
            coordinator.handover(ctx)
        assert _store_files(store_dir) == []

    def test_spawn_failure_preserves_context(self, store_dir: Path, work_dir: Path) -> None:
        coordinator = HandoverCoordinator(
            FilesystemContextStore(store_dir),
            orchestrator=PersonaProcessOrchestrator(command=("no-such-persona-binary-xyz",)),
        )
        with pytest.raises(ProcessSpawnError) as excinfo:
            coordinator.handover(_context(work_dir))
        assert excinfo.value.context_path is not None
        assert excinfo.value.context_path.exists()

    def test_failed_child_is_reported_and_cleaned(
        self, coordinator: HandoverCoordinator, store_dir: Path, work_dir: Path
    ) -> None:
        result = coordinator.handover(_context(work_dir, task="fail"))
        assert result.status == TaskStatus.FAILED
        assert "analysis crashed" in (result.error or "")
        assert _store_files(store_dir) == []

    def test_failed_child_without_stderr(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        result = coordinator.handover(_context(work_dir, task="silent-fail"))
        assert result.error == "Process exited with code 3"

    def test_json_fallback_context_is_handed_over(
        self, coordinator: HandoverCoordinator, store_dir: Path, work_dir: Path
    ) -> None:
        ctx = _context(work_dir)
        ctx.scientific.custom_extensions["tags"] = {"spectra"}
        result = coordinator.handover(ctx)
        assert ctx.metadata.encoding_format is EncodingFormat.JSON_FALLBACK
        assert result.succeeded
        assert _store_files(store_dir) == []

    def test_context_variables_reach_child(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        ctx = _context(work_dir, task="env:DATASET")
        ctx.environment.variables["DATASET"] = "run-7"
        result = coordinator.handover(ctx)
        assert result.output.strip() == "run-7"

    def test_denied_variables_never_reach_child(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        ctx = _context(work_dir, task="env:LD_PRELOAD")
        ctx.environment.variables["LD_PRELOAD"] = "/tmp/evil.so"
        result = coordinator.handover(ctx)
        assert "evil" not in result.output
        assert "LD_PRELOAD" not in ctx.environment.variables

    def test_extra_args_forwarded(
        self, coordinator: HandoverCoordinator, work_dir: Path
    ) -> None:
        ctx = _context(work_dir)
        ctx.environment.extra_args = ["--fast"]
        result = coordinator.handover(ctx)
        assert "extra=--fast" in result.output

    def test_concurrent_handovers(
        self, coordinator: HandoverCoordinator, store_dir: Path, work_dir: Path
    ) -> None:
        contexts = [_context(work_dir) for _ in range(4)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(coordinator.handover, contexts))
        assert all(result.succeeded for result in results)
        assert len({ctx.context_id for ctx in contexts}) == 4
        assert _store_files(store_dir) == []


# ---------------------------------------------------------------------------
# Collaborator wiring
# ---------------------------------------------------------------------------


class TestCoordinatorWiring:
    def test_create_and_load_round_trip(self, work_dir: Path) -> None:
        coordinator, store = _memory_coordinator(_FakeRunner())
        ctx = _context(work_dir)
        path = coordinator.create_context(ctx)
        assert path in store
        assert coordinator.load_context(path).model_dump() == ctx.model_dump()

    def test_timeout_precedence(self, work_dir: Path) -> None:
        runner = _FakeRunner()
        coordinator, _ = _memory_coordinator(runner)
        ctx = _context(work_dir)
        ctx.environment.timeout_ms = 4_000
        coordinator.handover(ctx)
        coordinator.handover(_context(work_dir), HandoverOptions(timeout_ms=250))
        assert runner.calls[0]["timeout_ms"] == 4_000
        assert runner.calls[1]["timeout_ms"] == 250

    def test_coordinator_default_timeout_applies_last(self, work_dir: Path) -> None:
        runner = _FakeRunner()
        coordinator = HandoverCoordinator(
            InMemoryContextStore(),
            orchestrator=PersonaProcessOrchestrator(command=("persona-agent",), runner=runner),
            default_timeout_ms=1_234,
        )
        ctx = _context(work_dir)
        ctx.environment.timeout_ms = None
        coordinator.handover(ctx)
        coordinator.handover(_context(work_dir))
        assert runner.calls[0]["timeout_ms"] == 1_234
        assert runner.calls[1]["timeout_ms"] == 30_000

    def test_config_default_timeout_reaches_runner(
        self, store_dir: Path, work_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        coordinator = HandoverCoordinator.from_config(
            HandoverConfig(store_dir=store_dir, default_timeout_ms=1_234)
        )
        runner = _FakeRunner()
        monkeypatch.setattr(
            coordinator, "_orchestrator", PersonaProcessOrchestrator(command=("persona-agent",), runner=runner)
        )
        ctx = _context(work_dir)
        ctx.environment.timeout_ms = None
        coordinator.handover(ctx)
        assert coordinator.default_timeout_ms == 1_234
        assert runner.calls[0]["timeout_ms"] == 1_234

    def test_option_env_applied_after_context_env(self, work_dir: Path) -> None:
        runner = _FakeRunner()
        coordinator, _ = _memory_coordinator(runner)
        ctx = _context(work_dir)
        ctx.environment.variables["MODE"] = "context"
        coordinator.handover(ctx, HandoverOptions(env={"MODE": "call"}))
        assert runner.calls[0]["env"]["MODE"] == "call"

    def test_working_directory_defaults_to_context(self, work_dir: Path, tmp_path: Path) -> None:
        runner = _FakeRunner()
        coordinator, _ = _memory_coordinator(runner)
        coordinator.handover(_context(work_dir))
        coordinator.handover(_context(work_dir), HandoverOptions(working_directory=tmp_path))
        assert runner.calls[0]["cwd"] == str(work_dir)
        assert runner.calls[1]["cwd"] == tmp_path

    def test_interactive_disables_capture(self, work_dir: Path) -> None:
        runner = _FakeRunner(CommandResult(0, "", "", elapsed_ms=1))
        coordinator, _ = _memory_coordinator(runner)
        result = coordinator.handover(_context(work_dir), HandoverOptions(interactive=True))
        assert runner.calls[0]["capture"] is False
        assert "--non-interactive" not in runner.calls[0]["argv"]
        assert result.artifacts == []

    def test_unexpected_error_propagates_and_preserves(
        self, work_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        coordinator, store = _memory_coordinator(_FakeRunner(error=RuntimeError("kaboom")))
        with caplog.at_level("ERROR", logger="persona_handover.handover.coordinator"):
            with pytest.raises(RuntimeError, match="kaboom"):
                coordinator.handover(_context(work_dir))
        assert len(store) == 1
        assert "context preserved at" in caplog.text

    def test_cleanup_context(self, work_dir: Path) -> None:
        coordinator, store = _memory_coordinator(_FakeRunner())
        path = coordinator.create_context(_context(work_dir))
        coordinator.cleanup_context(path)
        assert len(store) == 0

    def test_sweep_uses_retention_default(self, work_dir: Path) -> None:
        now = [1_000.0]
        store = InMemoryContextStore(clock=lambda: now[0])
        coordinator = HandoverCoordinator(store, retention_ms=10_000)
        coordinator.create_context(_context(work_dir))
        now[0] += 5
        assert coordinator.sweep() == []
        now[0] += 10
        assert len(coordinator.sweep()) == 1
        assert len(store) == 0

    def test_sweep_explicit_age(self, work_dir: Path) -> None:
        now = [1_000.0]
        store = InMemoryContextStore(clock=lambda: now[0])
        coordinator = HandoverCoordinator(store)
        coordinator.create_context(_context(work_dir))
        now[0] += 2
        assert len(coordinator.sweep(max_age_ms=1_000)) == 1

    def test_from_config(self, store_dir: Path) -> None:
        coordinator = HandoverCoordinator.from_config(HandoverConfig(store_dir=store_dir))
        assert isinstance(coordinator.store, FilesystemContextStore)
        assert coordinator.store.store_dir == store_dir
        assert "FilesystemContextStore" in repr(coordinator)
