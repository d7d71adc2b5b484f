from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from session_memory import MemoryConfig


def _load_benchmark(project_root: Path):
    spec = importlib.util.spec_from_file_location("benchmark", project_root / "scripts" / "benchmark.py")
    module = importlib.util.module_from_spec(spec)
    sys.modules["benchmark"] = module
    spec.loader.exec_module(module)
    return module


def test_percentiles(project_root: Path):
    bench = _load_benchmark(project_root)
    out = bench.percentiles([5.0, 1.0, 3.0, 2.0, 4.0], [0.5, 1.0])
    assert out == {"p50": 3.0, "p100": 5.0}


def test_run_benchmark_small(project_root: Path):
    bench = _load_benchmark(project_root)
    config = MemoryConfig(max_messages_per_session=8, max_context_messages=4, enable_automatic_cleanup=False)
    result = bench.run_benchmark(sessions=3, turns=6, repeat=12, warmup=1, concurrency=2, config=config)

    summary = result["summary"]
    assert summary["runs"] == 12
    assert summary["errors"] == 0
    assert summary["prompt_chars_avg"] > len("Can you give me examples of that approach?")
    assert [s.idx for s in result["samples"]] == list(range(12))
    assert result["monitor"]["total_context_builds"] == 13
