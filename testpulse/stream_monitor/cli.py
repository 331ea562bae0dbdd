"""CLI entry point for streaming test-output monitoring."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import TextIO

import typer

from testpulse.stream_monitor.failure_analysis import FailureCollector
from testpulse.stream_monitor.history_loader import load_history
from testpulse.stream_monitor.models.monitor_config import (
    InsightServiceConfig,
    MonitorConfig,
)
from testpulse.stream_monitor.models.prediction import TestRef
from testpulse.stream_monitor.monitor import RealTimeTestMonitor
from testpulse.stream_monitor.prediction import PredictionEngine
from testpulse.stream_monitor.stores.base import InsightStore
from testpulse.stream_monitor.stores.http import HttpInsightStore
from testpulse.stream_monitor.stores.memory import HistoryInsightStore
from testpulse.stream_monitor.watchers import HistoryRecorder, ProgressLogger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()

CHUNK_SIZE = 4096


def parse_test_ref(value: str) -> TestRef:
    """Parse ``file::name`` (or a bare test name) into a test reference."""
    if "::" in value:
        file_name, _, test_name = value.partition("::")
        return TestRef(test_name=test_name, file_name=file_name or None)
    return TestRef(test_name=value)


def _stream_into(monitor: RealTimeTestMonitor, stream: TextIO) -> None:
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
        monitor.feed(chunk)


@app.command()
def monitor(
    input_path: Path | None = typer.Option(  # noqa: B008
        None, "--input", help="File with test output (default: stdin)"
    ),
    history: Path | None = typer.Option(  # noqa: B008
        None, help="YAML history file to learn from and predict with"
    ),
    debounce_ms: int = typer.Option(120, help="Quiet period before parsing (ms)"),
) -> None:
    """Parse test output as it streams in and report live metrics."""
    config = MonitorConfig(debounce_interval_ms=debounce_ms)

    store = HistoryInsightStore()
    if history is not None:
        try:
            store = asyncio.run(load_history(history))
            logger.info(f"Loaded history for {len(store.tracked_tests)} tests")
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Failed to load history: {e}")
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1)

    test_monitor = RealTimeTestMonitor(insight_store=store, config=config)
    failures = FailureCollector()
    test_monitor.subscribe(ProgressLogger())
    test_monitor.subscribe(HistoryRecorder(store))
    test_monitor.subscribe(failures)

    test_monitor.start_monitoring()
    try:
        if input_path is None:
            _stream_into(test_monitor, sys.stdin)
        else:
            with input_path.open(encoding="utf-8", errors="replace") as f:
                _stream_into(test_monitor, f)
    except OSError as e:
        test_monitor.stop_monitoring()
        logger.error(f"Failed to read test output: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    test_monitor.flush()
    metrics = test_monitor.stop_monitoring()

    output = {
        "metrics": metrics.model_dump(mode="json"),
        "failures": [insight.model_dump(mode="json") for insight in failures.insights],
    }
    if history is not None:
        candidates = [
            TestRef(test_name=test_name, file_name=file_name)
            for test_name, file_name in store.tracked_tests
        ]
        predictions = asyncio.run(test_monitor.get_predictions(candidates))
        output["predictions"] = predictions.model_dump(
            mode="json", exclude={"context"}
        )
    typer.echo(json.dumps(output, indent=2))

    if metrics.failed:
        logger.error(f"Tests failed: {metrics.failed}/{metrics.total_tests}")
        raise typer.Exit(code=1)


@app.command()
def predict(
    tests: list[str] = typer.Option(  # noqa: B008
        ..., "--test", help="Candidate test as file::name (repeatable)"
    ),
    history: Path | None = typer.Option(  # noqa: B008
        None, help="YAML history file to predict from"
    ),
    insight_url: str | None = typer.Option(
        None, help="Base URL of an insight service"
    ),
    threshold: float = typer.Option(0.0, help="Minimum risk to report"),
) -> None:
    """Rank candidate tests by failure risk."""
    try:
        store = _create_store(history, insight_url)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Failed to create insight store: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    engine = PredictionEngine(store, risk_threshold=threshold)
    candidates = [parse_test_ref(value) for value in tests]

    try:
        predictions = asyncio.run(engine.get_predictions(candidates))
    except Exception as e:
        logger.exception("Prediction failed")
        typer.echo(f"Error running predictions: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(predictions.model_dump_json(indent=2, exclude={"context"}))


def _create_store(history: Path | None, insight_url: str | None) -> InsightStore:
    """Create an insight store from a history file or service URL."""
    if "TESTPULSE_INSIGHT_URL" in os.environ:
        insight_url = os.environ["TESTPULSE_INSIGHT_URL"]

    if history is not None:
        return asyncio.run(load_history(history))
    if insight_url:
        return HttpInsightStore(
            InsightServiceConfig(
                base_url=insight_url,
                token=os.environ.get("TESTPULSE_INSIGHT_TOKEN"),
            )
        )
    raise ValueError("Either --history or --insight-url must be provided")


if __name__ == "__main__":  # pragma: no cover
    app()
