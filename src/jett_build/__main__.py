"""Entry point for `python -m jett_build` and the `jett-build` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
import uuid
from pathlib import Path

from pydantic import ValidationError

from jett_build.build_log import BuildLog
from jett_build.models import Feature, ModuleStatus, Project
from jett_build.orchestrator import open_orchestrator
from jett_build.planning import plan_modules
from jett_build.rollback import rollback_module
from jett_build.settings import RuntimeSettings
from jett_build.snapshots import SnapshotStore
from jett_build.state_store import ProjectStateStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a generated project module by module")
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Root of the generated project (default: cwd)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    plan = commands.add_parser("plan", help="Create Core Setup plus one draft module per feature")
    plan.add_argument("--name", default="App", help="Project name")
    plan.add_argument("--description", default="", help="One-paragraph project description")
    plan.add_argument("--project-id", default=None, help="Stable project id (default: generated)")
    plan.add_argument(
        "--feature",
        action="append",
        default=[],
        help='Feature as "Title" or "Title: description"; repeatable',
    )
    plan.add_argument("--features-file", type=Path, default=None, help="JSON list of {title, description}")

    build = commands.add_parser("build", help="Build a module and auto-progress through the stack")
    build.add_argument("--module", default=None, help="Module id (default: first draft module in the stack)")

    snapshots = commands.add_parser("snapshots", help="List snapshots or show one")
    snapshots.add_argument("--details", default=None, metavar="SNAPSHOT_ID", help="Print metadata for one snapshot")

    rollback = commands.add_parser("rollback", help="Restore the project to the state after a task")
    rollback.add_argument("--module", required=True, help="Module id")
    rollback.add_argument("--task", type=int, required=True, help="1-based task position")
    return parser.parse_args(argv)


def parse_feature(raw: str, index: int) -> Feature:
    title, _, description = raw.partition(":")
    title = title.strip()
    if not title:
        raise ValueError(f"feature {index + 1} has an empty title")
    return Feature(id=f"feature-{index}", title=title, description=description.strip())


def load_features(inline: list[str], features_file: Path | None) -> list[Feature]:
    features = [parse_feature(raw, index) for index, raw in enumerate(inline)]
    if features_file is None:
        return features
    if not features_file.is_file():
        raise FileNotFoundError(f"Features file does not exist: {features_file}")
    try:
        payload = json.loads(features_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Features file is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ValueError("Features file must contain a JSON list")
    offset = len(features)
    for index, item in enumerate(payload, start=offset):
        if not isinstance(item, dict):
            raise ValueError(f"feature {index + 1} must be an object")
        try:
            features.append(Feature.model_validate({"id": f"feature-{index}", **item}))
        except ValidationError as exc:
            raise ValueError(f"feature {index + 1} is invalid: {exc}") from exc
    return features


def run_plan(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    project_dir: Path = args.project_dir
    features = load_features(args.feature, args.features_file)
    project_dir.mkdir(parents=True, exist_ok=True)
    seed = Project(
        id=args.project_id or f"project-{uuid.uuid4().hex[:8]}",
        name=args.name,
        description=args.description,
        features=features,
    )
    project = plan_modules(seed)
    ProjectStateStore(settings.state_path(project_dir)).save(project)
    print(f"project_id={project.id}")
    print(f"modules={len(project.modules)}")
    for module in project.ordered_modules():
        print(f"module={module.id} name={module.name!r} status={module.status.value}")
    return 0


def run_build(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    orchestrator = open_orchestrator(args.project_dir, settings=settings)
    project = orchestrator.project
    module_id = args.module
    if module_id is None:
        drafts = [module.id for module in project.ordered_modules() if module.status == ModuleStatus.DRAFT]
        if not drafts:
            logging.error("No draft module left to build; pass --module to rebuild one")
            return 1
        module_id = drafts[0]
    try:
        report = orchestrator.build_module(module_id)
    finally:
        orchestrator.close()

    print(f"accepted={report.accepted}")
    if not report.accepted:
        print(f"reason={report.reason}")
        return 1
    print(f"modules_built={','.join(report.modules_built)}")
    if report.reason:
        print(f"reason={report.reason}")
    for built_id, status in report.statuses.items():
        print(f"module={built_id} status={status.value}")
    complete = all(report.statuses[built] == ModuleStatus.COMPLETE for built in report.modules_built)
    return 0 if complete else 1


def run_snapshots(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    store = SnapshotStore(settings.history_dir)
    if args.details is not None:
        details = store.details(args.project_dir, args.details)
        if not details.success or details.metadata is None:
            print(f"error={details.error}")
            return 1
        print(json.dumps(details.metadata.model_dump(mode="json", by_alias=True), indent=2))
        return 0

    listing = store.list(args.project_dir)
    if not listing.success:
        print(f"error={listing.error}")
        return 1
    print(f"snapshots={len(listing.snapshots)}")
    for summary in listing.snapshots:
        print(
            f"snapshot={summary.id} files={summary.file_count} "
            f"timestamp={summary.timestamp.isoformat()} description={summary.task_description!r}"
        )
    return 0


def run_rollback(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    state_store = ProjectStateStore(settings.state_path(args.project_dir))
    project = state_store.load()
    result = rollback_module(
        project,
        args.project_dir,
        args.module,
        args.task,
        snapshots=SnapshotStore(settings.history_dir),
        build_log=BuildLog(),
    )
    print(f"success={result.success}")
    if not result.success:
        print(f"error={result.error}")
        return 1
    state_store.save(project)
    print(f"snapshot={result.snapshot_id}")
    print(f"files_restored={result.files_restored}")
    print(f"snapshots_deleted={result.snapshots_deleted}")
    return 0


COMMANDS = {
    "plan": run_plan,
    "build": run_build,
    "snapshots": run_snapshots,
    "rollback": run_rollback,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.project_dir = args.project_dir.resolve()

    try:
        settings = RuntimeSettings.from_env()
        return COMMANDS[args.command](args, settings)
    except (OSError, ValueError, RuntimeError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    except Exception as exc:  # noqa: BLE001
        logging.exception("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
