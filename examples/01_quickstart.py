#!/usr/bin/env python3
"""Example: Quickstart — persona-handover

Minimal working example: build a context, hand it over to a persona
process, and read the extracted artifacts.  A one-line Python program
stands in for the real persona command.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install persona-handover
"""
from __future__ import annotations

import sys
import tempfile
from pathlib import Path

import persona_handover
from persona_handover import (
    FileReference,
    FileRole,
    HandoverCoordinator,
    InMemoryContextStore,
    PersonaContext,
    PersonaProcessOrchestrator,
)

# Prints one artifact line and ignores the handover arguments.
_PERSONA = (sys.executable, "-c", "print('Created: ./report.md')")


def main() -> None:
    print(f"persona-handover version: {persona_handover.__version__}")

    with tempfile.TemporaryDirectory() as work:
        data = Path(work) / "input.csv"
        data.write_text("sample,value\na,1\nb,2\n", encoding="utf-8")

        # Step 1: Describe the work for the next persona
        context = PersonaContext.create(
            "data-expert",
            "analysis-expert",
            "summarise input.csv",
            working_directory=work,
        )
        context.artifacts.files.append(FileReference.from_path(data, role=FileRole.INPUT))
        context.environment.variables["DATASET"] = "demo"
        print(context.summary_line())

        # Step 2: Hand it over
        coordinator = HandoverCoordinator(
            InMemoryContextStore(),
            orchestrator=PersonaProcessOrchestrator(command=_PERSONA),
        )
        result = coordinator.handover(context)

        # Step 3: Inspect the outcome
        print(f"\nStatus: {result.status.value} in {result.execution_time_ms}ms")
        print(f"Artifacts: {result.artifacts}")
        print(f"Contexts left in store: {len(coordinator.store.list_contexts())}")


if __name__ == "__main__":
    main()
