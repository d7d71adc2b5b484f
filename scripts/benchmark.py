#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Session memory: prompt composition micro-benchmark

Features
- Seeds N sessions with a synthetic user/assistant history
- Warmup iterations (excluded from stats)
- Multiple timed compose_prompt runs with percentile summary (p50/p90/p95/p99)
- Optional concurrent runs (simple thread fan-out over sessions)
- Tracks:
  - wall time per compose
  - prompt size in chars
  - peak Python heap via tracemalloc
  - RSS (process resident set) via psutil
- Saves results to CSV and/or JSON

Usage
-----
python scripts/benchmark.py --sessions 50 --turns 20 --repeat 200
python scripts/benchmark.py --repeat 500 --concurrency 4 --csv bench.csv
python scripts/benchmark.py --prompt "Can you explain that approach again?" --json bench.json
"""

from __future__ import annotations

import argparse
import csv
import json
import statistics as stats
import sys
import threading
import time
import tracemalloc
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

# Ensure src/ is on path for direct execution
ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from session_memory import ConversationService, ConversationStore, MemoryConfig, MemoryMonitor  # type: ignore  # noqa: E402
from session_memory.monitor import process_memory_mb  # type: ignore  # noqa: E402

USER_LINES = [
    "I'm learning about algorithms",
    "I am not good at python",
    "I prefer short answers with examples",
    "Tell me about Docker and Kubernetes",
    "How does the Spring Boot API layer talk to the database?",
]
ASSISTANT_LINES = [
    "Algorithms are step-by-step procedures for solving a problem.",
    "A caching approach works well when reads dominate writes.",
    "The query planner picks an index when the filter is selective.",
    "Kubernetes schedules containers built from Docker images.",
]


# -----------------------------
# Utilities
# -----------------------------
def now() -> float:
    return time.perf_counter()


def percentiles(values: List[float], ps: List[float]) -> Dict[str, float]:
    if not values:
        return {f"p{int(p*100)}": float("nan") for p in ps}
    vs = sorted(values)
    out = {}
    for p in ps:
        k = max(0, min(len(vs) - 1, int(round((len(vs) - 1) * p))))
        out[f"p{int(p*100)}"] = vs[k]
    return out


def seed(service: ConversationService, sessions: int, turns: int) -> List[str]:
    """Record ``turns`` user/assistant pairs in each of ``sessions`` sessions."""
    ids = [f"bench-{i}" for i in range(sessions)]
    for sid in ids:
        for t in range(turns):
            service.record_user_turn(sid, f"{USER_LINES[t % len(USER_LINES)]} ({t})")
            service.record_assistant_turn(sid, f"{ASSISTANT_LINES[t % len(ASSISTANT_LINES)]} ({t})")
    return ids


# -----------------------------
# Data model
# -----------------------------
@dataclass
class Sample:
    idx: int
    session_id: str
    duration_ms: float
    prompt_chars: int
    heap_peak_kb: float
    rss_mb: float
    error: Optional[str] = None


# -----------------------------
# Runner
# -----------------------------
def run_once(service: ConversationService, session_id: str, prompt: str, idx: int) -> Sample:
    tracemalloc.start()
    tracemalloc.reset_peak()

    start = now()
    out = ""
    err: Optional[str] = None
    try:
        out = service.compose_prompt(session_id, prompt)
    except Exception as e:
        err = f"{type(e).__name__}: {e}"
    finally:
        _, peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

    return Sample(
        idx=idx,
        session_id=session_id,
        duration_ms=(now() - start) * 1000,
        prompt_chars=len(out),
        heap_peak_kb=peak / 1024,
        rss_mb=process_memory_mb(),
        error=err,
    )


def fan_out(service: ConversationService, session_ids: List[str], prompt: str, n: int, threads: int) -> List[Sample]:
    """Simple threaded fan-out; sample ``i`` targets session ``i % len(session_ids)``."""
    results: List[Sample] = []
    lock = threading.Lock()
    counter = {"i": 0}

    def worker() -> None:
        while True:
            with lock:
                i = counter["i"]
                if i >= n:
                    return
                counter["i"] += 1
            s = run_once(service, session_ids[i % len(session_ids)], prompt, i)
            with lock:
                results.append(s)

    threads_list: List[threading.Thread] = []
    for _ in range(threads):
        th = threading.Thread(target=worker, daemon=True)
        th.start()
        threads_list.append(th)
    for th in threads_list:
        th.join()

    results.sort(key=lambda s: s.idx)
    return results


def summarize(results: List[Sample]) -> Dict[str, Any]:
    ok = [s for s in results if not s.error]
    durs = [s.duration_ms for s in ok]
    summary: Dict[str, Any] = {
        "runs": len(results),
        "ok": len(ok),
        "errors": len(results) - len(ok),
    }
    if durs:
        summary.update({
            "duration_avg_ms": stats.mean(durs),
            "duration_min_ms": min(durs),
            "duration_max_ms": max(durs),
            **percentiles(durs, [0.50, 0.90, 0.95, 0.99]),
            "prompt_chars_avg": stats.mean(s.prompt_chars for s in ok),
            "heap_peak_kb_max": max(s.heap_peak_kb for s in ok),
            "rss_mb_last": ok[-1].rss_mb,
        })
    return summary


def run_benchmark(
    sessions: int = 20,
    turns: int = 10,
    repeat: int = 100,
    warmup: int = 5,
    concurrency: int = 1,
    prompt: str = "Can you give me examples of that approach?",
    config: Optional[MemoryConfig] = None,
) -> Dict[str, Any]:
    """Seed a store, time ``compose_prompt`` and return summary + samples."""
    config = config or MemoryConfig(enable_automatic_cleanup=False)
    store = ConversationStore(config, monitor=MemoryMonitor(config))
    service = ConversationService(store)
    session_ids = seed(service, max(1, sessions), max(1, turns))

    for i in range(warmup):
        run_once(service, session_ids[i % len(session_ids)], prompt, i)

    n = max(1, repeat)
    if concurrency <= 1:
        results = [run_once(service, session_ids[i % len(session_ids)], prompt, i) for i in range(n)]
    else:
        results = fan_out(service, session_ids, prompt, n, threads=concurrency)

    return {
        "summary": summarize(results),
        "samples": results,
        "monitor": service.monitor.performance_metrics() if service.monitor else {},
    }


# -----------------------------
# CLI
# -----------------------------
def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Session memory: prompt composition micro-benchmark")
    p.add_argument("--sessions", type=int, default=20, help="Number of seeded sessions")
    p.add_argument("--turns", type=int, default=10, help="User/assistant pairs seeded per session")
    p.add_argument("--repeat", type=int, default=100, help="Number of measured runs")
    p.add_argument("--warmup", type=int, default=5, help="Warmup runs (excluded from stats)")
    p.add_argument("--concurrency", type=int, default=1, help="Thread count (1 = sequential)")
    p.add_argument("--prompt", type=str, default="Can you give me examples of that approach?", help="User text to compose")
    p.add_argument("--max-messages", type=int, default=50, help="Retention window per session")
    p.add_argument("--window", type=int, default=10, help="Messages shown per composed prompt")
    p.add_argument("--csv", type=str, default=None, help="Write per-sample rows to CSV")
    p.add_argument("--json", type=str, default=None, help="Write summary + samples to JSON")
    return p.parse_args()


# -----------------------------
# Main
# -----------------------------
def main() -> None:
    args = parse_args()

    config = MemoryConfig(
        max_messages_per_session=args.max_messages,
        max_context_messages=args.window,
        enable_automatic_cleanup=False,
    )
    try:
        config.validate()
    except ValueError as e:
        print(f"[fatal] invalid memory config: {e}")
        sys.exit(2)

    print(f"[run] sessions={args.sessions} turns={args.turns} repeat={args.repeat} concurrency={args.concurrency}")
    result = run_benchmark(
        sessions=args.sessions,
        turns=args.turns,
        repeat=args.repeat,
        warmup=args.warmup,
        concurrency=args.concurrency,
        prompt=args.prompt,
        config=config,
    )
    summary = result["summary"]
    samples: List[Sample] = result["samples"]

    if not summary["ok"]:
        print("\n[summary] no successful runs.")
        sys.exit(3)

    print("\n[summary]")
    for k, v in summary.items():
        if isinstance(v, float):
            print(f"- {k}: {v:.3f}")
        else:
            print(f"- {k}: {v}")

    if args.csv:
        with open(args.csv, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=list(asdict(samples[0]).keys()))
            w.writeheader()
            for s in samples:
                w.writerow(asdict(s))
        print(f"[write] CSV -> {args.csv}")

    if args.json:
        payload = {
            "summary": summary,
            "monitor": result["monitor"],
            "samples": [asdict(s) for s in samples],
            "config": {
                "sessions": args.sessions,
                "turns": args.turns,
                "repeat": args.repeat,
                "warmup": args.warmup,
                "concurrency": args.concurrency,
                "prompt": args.prompt,
                "memory": config.to_dict(),
            },
        }
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        print(f"[write] JSON -> {args.json}")


if __name__ == "__main__":
    main()
