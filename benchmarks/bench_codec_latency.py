"""Benchmark: Context codec latency — encode/decode p50/p99.

Measures the per-call latency of a full ContextCodec round trip plus the
checksum computation, for a context carrying a realistic artifact bundle.
"""
from __future__ import annotations

import json
import time
from pathlib import Path

from persona_handover.context.serializer import ContextCodec, DomainBlob, compute_checksum
from persona_handover.context.state import ConversationTurn, FileReference, MemoryFact, PersonaContext

_WARMUP: int = 100
_ITERATIONS: int = 2_000


def _build_context() -> PersonaContext:
    context = PersonaContext.create("data-expert", "analysis-expert", "analyze run outputs")
    for i in range(50):
        context.artifacts.files.append(
            FileReference(path=f"runs/{i:03d}/output.csv", size=1024 * i, format="csv")
        )
        context.artifacts.memory.facts.append(MemoryFact(key=f"fact-{i}", value=str(i)))
        context.artifacts.chat_history.append(
            ConversationTurn(role="assistant", content=f"processed chunk {i}" * 10)
        )
    context.artifacts.memory.cache["embedding"] = DomainBlob(bytes(4096))
    context.artifacts.memory.cache["total_rows"] = 2**80
    return context


def bench_codec_round_trip_latency() -> dict[str, object]:
    """Benchmark encode + checksum + decode per-call latency.

    Returns
    -------
    dict with keys: operation, iterations, payload_bytes, total_seconds,
    ops_per_second, avg_latency_ms, p99_latency_ms.
    """
    codec = ContextCodec()
    context = _build_context()

    for _ in range(_WARMUP):
        codec.decode(codec.encode(context))

    payload = b""
    latencies_ms: list[float] = []
    for _ in range(_ITERATIONS):
        t0 = time.perf_counter()
        payload = codec.encode(context)
        compute_checksum(payload)
        codec.decode(payload)
        latencies_ms.append((time.perf_counter() - t0) * 1000)

    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    total = sum(latencies_ms) / 1000

    result: dict[str, object] = {
        "operation": "codec_round_trip_latency",
        "iterations": _ITERATIONS,
        "payload_bytes": len(payload),
        "total_seconds": round(total, 4),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "avg_latency_ms": round(sum(latencies_ms) / n, 4),
        "p99_latency_ms": round(sorted_lats[min(int(n * 0.99), n - 1)], 4),
    }
    print(
        f"[bench_codec_latency] {result['operation']}: "
        f"p99={result['p99_latency_ms']:.4f}ms  "
        f"mean={result['avg_latency_ms']:.4f}ms  "
        f"size={result['payload_bytes']}B"
    )
    return result


def run_benchmark() -> dict[str, object]:
    """Entry point returning the benchmark result dict."""
    return bench_codec_round_trip_latency()


if __name__ == "__main__":
    result = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "codec_latency_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=2)
    print(f"Results saved to {output_path}")
