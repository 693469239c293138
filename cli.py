#!/usr/bin/env python3
"""
Cluster Playground CLI

Command-line interface for running the clustering engine on a point file.

Usage:
    python cli.py algorithms                                  # List algorithms and defaults
    python cli.py cluster points.json                         # Cluster with the default algorithm
    python cli.py cluster points.csv -a dbscan -p eps=3 -p minPts=2
    python cli.py cluster points.json -a hierarchical -p linkage=single --executor thread

Point files:
    JSON: a list of {"x": .., "y": .., "label": ..} records or [x, y] pairs,
          or an object with a "points" list
    CSV:  header row with x, y (and optionally z, label/class/species/category)
"""

import argparse
import asyncio
import csv
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from cluster_playground.api.coordinator import Coordinator, PlaygroundState
from cluster_playground.api.executor import create_executor
from cluster_playground.config.settings_loader import ConfigManager, Settings
from cluster_playground.core.clustering_engine import ClusteringEngine
from cluster_playground.core.dataset import Dataset
from cluster_playground.schemas.data_models import JobStatus
from cluster_playground.utils.advanced_logging import configure_logging
from cluster_playground.utils.error_handling import ClusteringServiceError


def load_points(path: str) -> Dataset:
    """
    Load a JSON or CSV point file.

    Args:
        path: File path

    Returns:
        Dataset snapshot
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Point file not found: {path}")

    if file_path.suffix.lower() == ".csv":
        with open(file_path, newline="") as f:
            records: List[Any] = []
            for row in csv.DictReader(f):
                record: Dict[str, Any] = {}
                for key, value in row.items():
                    key = (key or "").strip().lower()
                    if key in ("x", "y", "z"):
                        record[key] = float(value)
                    elif key:
                        record[key] = value
                records.append(record)
        return Dataset.from_records(records)

    with open(file_path) as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get("points", payload.get("data", []))
    return Dataset.from_records(payload)


def parse_params(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """
    Parse repeated key=value options.

    Values are read as JSON (1e-3 is a float), falling back to a YAML scalar
    for bare words such as `random` or `yes`.
    """
    params: Dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"Parameter must be key=value, got '{pair}'")
        key, value = pair.split("=", 1)
        try:
            params[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            params[key.strip()] = yaml.safe_load(value)
    return params


def print_json(data: Any) -> None:
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def print_progress(state: PlaygroundState) -> None:
    """Single-line progress indicator."""
    progress = state.progress
    if progress is None or state.status != JobStatus.RUNNING:
        return
    fraction = progress.fraction
    percent = f"{fraction * 100:5.1f}%" if fraction is not None else "  ?  "
    print(f"\r   Progress: {percent} | {progress.algorithm}", end="", file=sys.stderr)


async def run_cluster(
    settings: Settings,
    dataset: Dataset,
    algorithm: str,
    params: Dict[str, Any],
    transport: Optional[str] = None,
    show_progress: bool = True,
) -> Dict[str, Any]:
    """
    Run one job through the coordinator and return a printable summary.

    Raises:
        ClusteringServiceError: Invalid input or a failed job
    """
    executor = create_executor(settings, transport=transport)
    with executor:
        coordinator = Coordinator(executor, settings)
        if show_progress:
            coordinator.subscribe(print_progress)

        coordinator.set_dataset(dataset)
        coordinator.set_algorithm(algorithm)
        for name, value in params.items():
            coordinator.set_parameter(name, value)

        outcome = await coordinator.run()
        if show_progress:
            print(file=sys.stderr)

    summary: Dict[str, Any] = {
        "job_id": outcome.job_id,
        "status": outcome.status.value,
        "parameters": coordinator.state.current_parameters.model_dump(mode="json"),
    }
    if outcome.result is not None:
        summary["result"] = outcome.result.to_dict()
        summary["clusters"] = [list(c.indices) for c in outcome.result.clusters]
        summary["noise"] = list(outcome.result.noise)
    if outcome.quality is not None:
        summary["quality"] = outcome.quality.model_dump(mode="json")
    if outcome.error is not None:
        summary["error"] = outcome.error.model_dump(mode="json")
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cluster Playground CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to settings.yaml")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("algorithms", help="List algorithms and default parameters")

    cluster_parser = subparsers.add_parser("cluster", help="Cluster a point file")
    cluster_parser.add_argument("file", help="JSON or CSV point file")
    cluster_parser.add_argument("--algorithm", "-a", help="Algorithm (kmeans/dbscan/hierarchical)")
    cluster_parser.add_argument(
        "--param", "-p", action="append", metavar="KEY=VALUE", help="Algorithm parameter (repeatable)"
    )
    cluster_parser.add_argument("--executor", choices=["process", "thread"], help="Executor transport")
    cluster_parser.add_argument("--quiet", "-q", action="store_true", help="Hide progress output")

    args = parser.parse_args(argv)

    try:
        settings = (
            ConfigManager.reload_config(args.config) if args.config else ConfigManager.get_settings()
        )
    except ClusteringServiceError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    configure_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        log_file=settings.logging.file,
        service_name=settings.service.name,
    )

    if args.command == "algorithms":
        print_json(
            {
                name: settings.default_parameters(name).model_dump(mode="json")
                for name in ClusteringEngine.available_algorithms()
            }
        )
        return 0

    if args.command == "cluster":
        try:
            dataset = load_points(args.file)
            params = parse_params(args.param)
            summary = asyncio.run(
                run_cluster(
                    settings,
                    dataset,
                    args.algorithm or settings.clustering.default_algorithm,
                    params,
                    transport=args.executor,
                    show_progress=not args.quiet,
                )
            )
        except (ClusteringServiceError, FileNotFoundError, ValueError) as e:
            print(f"❌ {getattr(e, 'message', e)}", file=sys.stderr)
            return 1

        print_json(summary)
        return 0 if summary["status"] == JobStatus.COMPLETED.value else 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
