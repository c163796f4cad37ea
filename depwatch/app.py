import argparse
import json
from pathlib import Path
from typing import List, Tuple

from . import __version__
from .config import Settings, load_settings
from .database import init_database, session_factory
from .errors import DepwatchError, PartialBatchError, ValidationError
from .logger import configure_logger, get_logger
from .models import Job, PublishedEvent, Repository
from .reconciler import JobReconciler
from .registry import fetch_latest_version
from .services import JobService, RepositoryService
from .stores import SqlJobStore, SqlRepositoryStore


def build_services(settings: Settings) -> Tuple[JobService, RepositoryService]:
    init_database(settings.db_path)
    factory = session_factory(settings.db_path)
    job_store = SqlJobStore(factory)
    repository_store = SqlRepositoryStore(factory)
    reconciler = JobReconciler(job_store, conflict_retries=settings.conflict_retries)
    return (
        JobService(job_store, repository_store, reconciler),
        RepositoryService(repository_store),
    )


def _read_json(path: str):
    input_path = Path(path)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _parse_deps(pairs: List[str]) -> dict:
    deps = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise SystemExit(f"Dependency must look like package=range, got: {pair}")
        package, version_range = pair.split("=", 1)
        deps[package.strip()] = version_range.strip()
    return deps


def _print_job(job: Job, label: str = "") -> None:
    deps = ", ".join(f"{d.name}@{d.version}" for d in job.dependencies)
    prefix = f"[{label}] " if label else ""
    print(f"{prefix}{job.name} (id={job.id}, state={job.state.value}) deps=[{deps}]")


def _run_event(args: argparse.Namespace, event: PublishedEvent) -> None:
    job_service, _ = build_services(args.settings)
    print(f"Event: {event.name}@{event.version}")
    if args.dry_run:
        mutations = job_service.plan_event(event)
        for mutation in mutations:
            _print_job(mutation.job, mutation.action.value)
        jobs = [mutation.job for mutation in mutations]
    else:
        jobs = job_service.handle_event(event)
        for job in jobs:
            _print_job(job, "saved")
    if not jobs:
        print("No affected repositories.")
    get_logger().log_metrics_summary()


def cmd_hook(args: argparse.Namespace) -> None:
    event = PublishedEvent.from_dict(_read_json(args.input))
    _run_event(args, event)


def cmd_poll(args: argparse.Namespace) -> None:
    try:
        event = fetch_latest_version(args.package, args.settings.registry_url)
    except ValueError as e:
        raise SystemExit(str(e))
    _run_event(args, event)


def cmd_init_db(args: argparse.Namespace) -> None:
    init_database(args.settings.db_path)
    print(f"Database ready: {args.settings.db_path}")


def cmd_repo_add(args: argparse.Namespace) -> None:
    _, repository_service = build_services(args.settings)
    repo = repository_service.create(Repository(name=args.name, dependencies=_parse_deps(args.dep)))
    print(f"Added {repo.name}: {json.dumps(repo.dependencies)}")


def cmd_repo_list(args: argparse.Namespace) -> None:
    _, repository_service = build_services(args.settings)
    total = repository_service.count()
    repos = repository_service.query(args.offset, args.limit)
    if not repos:
        print("No repositories.")
        return
    print(f"Showing {len(repos)} of {total} repositories:\n")
    for repo in repos:
        print(f"{repo.name}")
        for package, version_range in repo.dependencies.items():
            print(f"  {package}: {version_range}")


def cmd_repo_import(args: argparse.Namespace) -> None:
    data = _read_json(args.input)
    if not isinstance(data, list):
        raise SystemExit("Input must be a JSON list of {\"name\", \"dependencies\"} objects")
    repos = [Repository(name=item.get("name", ""), dependencies=item.get("dependencies") or {}) for item in data]

    _, repository_service = build_services(args.settings)
    result = repository_service.patch(repos)
    for repo in result.repositories:
        status = "error" if repo.name in result.errors else "updated"
        print(f"[{status}] {repo.name}")
    for name, error in result.errors.items():
        print(f"[error] {name}: {error}")
    print(f"Done. updated={len(repos) - len(result.errors)} failed={len(result.errors)}")


def cmd_jobs_list(args: argparse.Namespace) -> None:
    job_service, _ = build_services(args.settings)
    total = job_service.count()
    jobs = job_service.query(args.offset, args.limit)
    if not jobs:
        print("No jobs.")
        return
    print(f"Showing {len(jobs)} of {total} jobs:\n")
    for job in jobs:
        _print_job(job)


def main(argv=None):
    settings = load_settings()
    parser = argparse.ArgumentParser(prog="depwatch", description="Create and update build jobs from package-publish hooks")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help=f"Path to SQLite database (default: {settings.db_path})")
    parser.add_argument("--log-level", help=f"Log level (default: {settings.log_level})")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create database tables")
    ini.set_defaults(func=cmd_init_db)

    hook = subparsers.add_parser("hook", help="Reconcile jobs for a publish hook JSON ({\"name\", \"version\"})")
    hook.add_argument("--input", required=True, help="Path to hook JSON")
    hook.add_argument("--dry-run", action="store_true", help="Show job changes without saving them")
    hook.set_defaults(func=cmd_hook)

    poll = subparsers.add_parser("poll", help="Fetch a package's latest version from the registry and reconcile")
    poll.add_argument("--package", required=True, help="npm package name")
    poll.add_argument("--dry-run", action="store_true", help="Show job changes without saving them")
    poll.set_defaults(func=cmd_poll)

    radd = subparsers.add_parser("repo-add", help="Track a repository")
    radd.add_argument("--name", required=True, help="Repository name")
    radd.add_argument("--dep", action="append", help="Dependency as package=range, repeatable. Example: left-pad=^1.2.0")
    radd.set_defaults(func=cmd_repo_add)

    rlst = subparsers.add_parser("repo-list", help="List tracked repositories")
    rlst.add_argument("--offset", type=int, default=0)
    rlst.add_argument("--limit", type=int, default=100)
    rlst.set_defaults(func=cmd_repo_list)

    rimp = subparsers.add_parser("repo-import", help="Bulk update repositories from a JSON list")
    rimp.add_argument("--input", required=True, help="Path to JSON list of repositories")
    rimp.set_defaults(func=cmd_repo_import)

    jlst = subparsers.add_parser("jobs-list", help="List jobs")
    jlst.add_argument("--offset", type=int, default=0)
    jlst.add_argument("--limit", type=int, default=100)
    jlst.set_defaults(func=cmd_jobs_list)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if args.db:
        settings.db_path = Path(args.db)
    if args.log_level:
        settings.log_level = args.log_level.upper()
    configure_logger(level=settings.log_level, log_dir=settings.log_dir)
    args.settings = settings

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        args.func(args)
    except ValidationError as e:
        print("Invalid:")
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(2)
    except PartialBatchError as e:
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(f"Error: {e}")
    except DepwatchError as e:
        raise SystemExit(f"Error: {e}")


if __name__ == "__main__":
    main()
