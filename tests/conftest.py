"""Shared fixtures for process-level tests."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

_STUB = Path(__file__).parent / "fixtures" / "child_stub.py"


@pytest.fixture()
def stub_command() -> tuple[str, ...]:
    """Command prefix that launches the stand-in persona process."""
    return (sys.executable, str(_STUB))
