#!/usr/bin/env -S uv run
"""
Queue Benchmark Tool for persistq

Measures add and drain (next → done) throughput of PersistentQueue across
storage adapters and hydration batch sizes.

Usage:
    uv run tools/benchmark_queue.py
    uv run tools/benchmark_queue.py --operations 5000 --batch-sizes 1,10,100
    uv run tools/benchmark_queue.py --adapters memory,sqlite-file
    uv run tools/benchmark_queue.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "persistq",
#     "typer>=0.9.0",
# ]
# ///

from __future__ import annotations

import asyncio
import statistics
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter

import typer

from persistq import InMemoryStorage, Job, PersistentQueue, QueueEvent, SQLiteStorage
from persistq.ports.storage import JobStoragePort

app = typer.Typer(
    help="Benchmark persistq add/drain throughput",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    """Configuration for benchmark runs."""

    operations: int = 1000
    batch_sizes: list[int] = field(default_factory=lambda: [1, 10, 100])
    adapters: list[str] = field(default_factory=lambda: ["memory", "sqlite-memory"])


@dataclass
class BenchmarkResult:
    """Results from a single benchmark run."""

    adapter_name: str
    batch_size: int
    operation: str
    total_ops: int
    total_time: float
    latencies: list[float]  # seconds

    @property
    def ops_per_sec(self) -> float:
        return self.total_ops / self.total_time if self.total_time > 0 else 0.0

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def p99(self) -> float:
        if not self.latencies:
            return 0.0
        sorted_latencies = sorted(self.latencies)
        idx = int(len(sorted_latencies) * 0.99)
        return sorted_latencies[min(idx, len(sorted_latencies) - 1)]

    @staticmethod
    def format_latency_ms(seconds: float) -> str:
        ms = seconds * 1000
        if ms < 1:
            return f"{ms:.3f}ms"
        elif ms < 10:
            return f"{ms:.2f}ms"
        else:
            return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Core Benchmark Functions
# ---------------------------------------------------------------------------


async def benchmark_add(queue: PersistentQueue, n: int) -> list[float]:
    """Latency of N sequential add() calls."""
    latencies = []
    for i in range(n):
        start = perf_counter()
        await queue.add({"task": "benchmark", "seq": i})
        latencies.append(perf_counter() - start)
    return latencies


async def benchmark_drain(queue: PersistentQueue) -> list[float]:
    """
    Start the queue and acknowledge every job as it is offered.

    Returns the time between consecutive ``next`` notifications, which
    includes done() and, at window boundaries, hydration.
    """
    latencies: list[float] = []
    drained = asyncio.Event()
    last = perf_counter()

    async def consume(job: Job) -> None:
        nonlocal last
        await queue.done(job.id)
        now = perf_counter()
        latencies.append(now - last)
        last = now

    queue.on(QueueEvent.NEXT, consume)
    queue.on(QueueEvent.EMPTY, drained.set)
    queue.start()
    await drained.wait()
    queue.stop()
    return latencies


def create_storage(adapter_name: str, temp_dir: Path, run: int) -> JobStoragePort:
    if adapter_name == "memory":
        return InMemoryStorage()
    if adapter_name == "sqlite-memory":
        return SQLiteStorage("")
    if adapter_name == "sqlite-file":
        return SQLiteStorage(str(temp_dir / f"bench-{run}.db"))
    raise typer.BadParameter(f"unknown adapter {adapter_name!r}")


async def run_benchmark(
    adapter_name: str, batch_size: int, config: BenchmarkConfig, temp_dir: Path, run: int
) -> list[BenchmarkResult]:
    storage = create_storage(adapter_name, temp_dir, run)
    results = []
    async with PersistentQueue(
        adapter_name, batch_size, storage=storage
    ) as queue:
        start = perf_counter()
        latencies = await benchmark_add(queue, config.operations)
        results.append(
            BenchmarkResult(
                adapter_name, batch_size, "add", len(latencies),
                perf_counter() - start, latencies,
            )
        )

        start = perf_counter()
        latencies = await benchmark_drain(queue)
        results.append(
            BenchmarkResult(
                adapter_name, batch_size, "drain", len(latencies),
                perf_counter() - start, latencies,
            )
        )
    return results


def format_results(results: list[BenchmarkResult]) -> None:
    typer.echo("\n" + "=" * 72)
    typer.echo("persistq Queue Benchmark Results")
    typer.echo("=" * 72)
    typer.echo(
        f"{'Adapter':<14} | {'Batch':>5} | {'Operation':<9} | {'Ops/sec':>9} | {'P50':>8} | {'P99':>8}"
    )
    typer.echo("-" * 72)
    for result in results:
        typer.echo(
            f"{result.adapter_name:<14} | "
            f"{result.batch_size:>5} | "
            f"{result.operation:<9} | "
            f"{result.ops_per_sec:>9.1f} | "
            f"{result.format_latency_ms(result.p50):>8} | "
            f"{result.format_latency_ms(result.p99):>8}"
        )
    typer.echo("=" * 72 + "\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    operations: int = typer.Option(
        1000, "--operations", "-n", help="Jobs added and drained per run"
    ),
    batch_sizes: str = typer.Option(
        "1,10,100", "--batch-sizes", "-b", help="Comma-separated hydration batch sizes"
    ),
    adapters: str = typer.Option(
        "memory,sqlite-memory",
        "--adapters",
        "-a",
        help="Comma-separated adapters: memory, sqlite-memory, sqlite-file",
    ),
) -> None:
    """
    Benchmark PersistentQueue add and drain throughput.

    Every run adds N jobs, then starts the queue and acknowledges each job
    from a ``next`` listener until the queue reports empty.
    """
    config = BenchmarkConfig(
        operations=operations,
        batch_sizes=[int(b) for b in batch_sizes.split(",")],
        adapters=[a.strip() for a in adapters.split(",")],
    )

    all_results = []
    with tempfile.TemporaryDirectory() as temp_dir_str:
        temp_dir = Path(temp_dir_str)
        run = 0
        for adapter_name in config.adapters:
            for batch_size in config.batch_sizes:
                run += 1
                try:
                    all_results.extend(
                        asyncio.run(
                            run_benchmark(adapter_name, batch_size, config, temp_dir, run)
                        )
                    )
                except Exception as e:
                    print(
                        f"\nError benchmarking {adapter_name} (batch {batch_size}): {e}",
                        file=sys.stderr,
                    )

    if all_results:
        format_results(all_results)
    else:
        print("\nNo benchmark results to display.", file=sys.stderr)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
