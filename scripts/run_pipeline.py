#!/usr/bin/env python3
"""
Run a pipeline locally in the foreground and print its result.
"""

import argparse
import json
import logging
import sys
import threading
import uuid
from pathlib import Path
from typing import Dict, List

from gantry.config import Config
from gantry.pipeline.executor import PipelineExecutor
from gantry.pipeline.loader import PipelineLoader, PipelineRegistry
from gantry.pipeline.schema import RunContext
from gantry.services.run_service import build_registry


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a gantry pipeline locally")
    parser.add_argument(
        "pipeline",
        help="Preset name (e.g. 'default') or path to a pipeline YAML file",
    )
    parser.add_argument(
        "--branch",
        default=Config.DEFAULT_BRANCH,
        help="Branch name the run builds",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Run parameter (repeatable)",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment value visible to stage conditions (repeatable)",
    )
    parser.add_argument(
        "--collaborators",
        default=Config.COLLABORATORS_CONFIG,
        help="Collaborators YAML file",
    )
    parser.add_argument(
        "--artifact-dir",
        default=None,
        help="Persist artifacts under this directory",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Workspace directory for checkout and build",
    )
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=Config.GATE_POLL_SECONDS,
        help="Quality gate poll interval",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the dry_run preset against fixed-outcome collaborators",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full run result as JSON",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    return parser.parse_args()


def _pairs(items: List[str]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Expected KEY=VALUE, got '{item}'")
        result[key] = value
    return result


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    loader = PipelineLoader()
    try:
        if args.dry_run:
            pipeline = loader.load_preset("dry_run")
        elif args.pipeline.endswith((".yaml", ".yml")):
            pipeline = loader.load_from_yaml(Path(args.pipeline))
        else:
            pipeline = PipelineRegistry(loader).find(args.pipeline)
            if pipeline is None:
                print(f"[error] Unknown pipeline '{args.pipeline}'")
                return 2
        registry = build_registry(Path(args.collaborators))
        parameters = _pairs(args.param)
        environment = _pairs(args.env)
    except (ValueError, FileNotFoundError) as exc:
        print(f"[error] {exc}")
        return 2

    for warning in loader.validate_pipeline(pipeline, list(registry.list_collaborators())):
        print(f"[warn] {warning}")

    executor = PipelineExecutor(
        registry,
        artifact_dir=Path(args.artifact_dir) if args.artifact_dir else None,
        gate_poll_interval=args.poll_seconds,
    )
    context = RunContext(
        run_id=uuid.uuid4().hex,
        branch_name=args.branch,
        environment=environment,
        parameters=parameters,
        workspace=Path(args.workspace) if args.workspace else None,
    )

    cancel_event = threading.Event()
    try:
        result = executor.execute(pipeline, context, cancel_event)
    except KeyboardInterrupt:
        cancel_event.set()
        print("\nInterrupted")
        return 130

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for record in result.stages:
            if record.executed:
                print(f"  {record.stage:<24} {record.result.outcome.value}")
            else:
                print(f"  {record.stage:<24} skipped ({record.reason})")
        print(f"{result.pipeline}: {result.status.value} ({result.state.value}) {result.message}".rstrip())

    return 0 if result.status.value == "SUCCESS" else 1


if __name__ == "__main__":
    sys.exit(main())
