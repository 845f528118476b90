"""CLI entry point for syncfolio."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import SyncfolioError
from .records import (
    PROJECTS,
    TEAM_MEMBERS,
    LocalCache,
    RecordKind,
    compute_project_derived,
    group_by_department,
)
from .sync import HttpRemote, Identity, SyncCoordinator


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Sync context passed through ``extra`` (identity, collection and phase)
    is emitted as top-level fields so log lines can be filtered per session.
    """

    CONTEXT_FIELDS = ("uid", "collection", "phase")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        for key in self.CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging to stderr.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Emit JSON lines carrying sync context fields.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    # Plain output goes to stderr so exported JSON on stdout stays parseable
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])
    if level > logging.DEBUG:
        # httpx logs every request at info
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_coordinator(config: Config, kind: RecordKind = PROJECTS) -> SyncCoordinator:
    """Create a coordinator for one record kind, wired to the configured cache and remote."""
    cache = LocalCache(config.cache.db_path, collection=kind.name) if config.cache.enabled else None

    remote = None
    if config.remote.enabled:
        remote = HttpRemote(
            config.remote.base_url,
            timeout=config.remote.timeout_seconds,
            poll_interval=config.remote.poll_interval_seconds,
        )

    collection = config.remote.team_collection if kind is TEAM_MEMBERS else config.remote.collection
    return SyncCoordinator(
        remote=remote,
        cache=cache,
        collection=collection,
        write_timeout=config.sync.write_timeout_seconds,
        kind=kind,
    )


def configured_identity(config: Config) -> Identity | None:
    if not config.remote.enabled or not config.identity.uid:
        return None
    return Identity(uid=config.identity.uid, token=config.identity.token or None)


async def open_session(config: Config, kind: RecordKind = PROJECTS) -> SyncCoordinator:
    """Build a coordinator, load the cache and sign in if an identity is configured."""
    coordinator = build_coordinator(config, kind)
    await coordinator.initialize()
    identity = configured_identity(config)
    if identity is not None:
        try:
            await coordinator.set_identity(identity)
        except SyncfolioError:
            await coordinator.close()
            raise
    return coordinator


def _print_records(coordinator: SyncCoordinator) -> None:
    records = coordinator.ordered_records()
    if not records:
        print("No projects.")
        return

    for record in records:
        derived = compute_project_derived(record)
        risk = "AT RISK" if derived.overall_risk == "at-risk" else "on track"
        client = f" ({record['client']})" if record.get("client") else ""
        print(f"{record['id']}  {record['name']}{client}  [{record.get('status')}, {risk}]")
        for flag in derived.risk_flags:
            print(f"    - {flag}")


async def cmd_list(args: argparse.Namespace) -> int:
    """List projects in display order."""
    coordinator = await open_session(load_config(args.config))
    try:
        _print_records(coordinator)
    finally:
        await coordinator.close()
    return 0


async def cmd_add(args: argparse.Namespace) -> int:
    """Create a project."""
    coordinator = await open_session(load_config(args.config))
    try:
        record = await coordinator.create(
            {"name": args.name, "client": args.client or "", "status": args.status}
        )
        print(f"Created {record['id']}: {record['name']}")
    finally:
        await coordinator.close()
    return 0


async def cmd_remove(args: argparse.Namespace) -> int:
    """Delete a project."""
    coordinator = await open_session(load_config(args.config))
    try:
        record = await coordinator.delete(args.id)
        print(f"Deleted {record['id']}: {record.get('name', '')}")
    finally:
        await coordinator.close()
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    """Export projects as JSON."""
    coordinator = await open_session(load_config(args.config))
    try:
        data = coordinator.export_collection()
    finally:
        await coordinator.close()

    if args.output:
        Path(args.output).write_text(data)
        print(f"Exported {len(json.loads(data))} projects to {args.output}")
    else:
        print(data)
    return 0


async def cmd_import(args: argparse.Namespace) -> int:
    """Replace all projects with the contents of a JSON file."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1

    coordinator = await open_session(load_config(args.config))
    try:
        records = await coordinator.import_collection(path.read_text())
        print(f"Imported {len(records)} projects")
    finally:
        await coordinator.close()
    return 0


async def cmd_upload_local(args: argparse.Namespace) -> int:
    """Upload locally cached projects to the signed-in remote collection."""
    coordinator = await open_session(load_config(args.config))
    try:
        uploaded = await coordinator.upload_cached_records()
        print(f"Uploaded {uploaded} local projects")
    finally:
        await coordinator.close()
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show sync status."""
    config = load_config(args.config)
    coordinator = await open_session(config)
    try:
        status_data = coordinator.get_status()
    finally:
        await coordinator.close()

    status_data["remote_url"] = config.remote.base_url if config.remote.enabled else None
    status_data["timestamp"] = datetime.now().isoformat()

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("Syncfolio Status")
        print("================")
        print(f"Phase: {status_data['phase']}")
        if status_data["remote_url"]:
            print(f"Remote: {status_data['remote_url']} (uid: {status_data['uid'] or 'not signed in'})")
        else:
            print("Remote: disabled (local only)")
        print(f"Cache: {status_data['cache'] or 'disabled'}")
        print(f"Projects: {status_data['records']}")
        print(f"Custom order entries: {status_data['order_length']}")
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Print the project list whenever it changes."""
    coordinator = await open_session(load_config(args.config))
    if not coordinator.remote_active:
        print("Remote sync is not active; nothing to watch.", file=sys.stderr)
        await coordinator.close()
        return 1

    def on_change(records: list) -> None:
        print(f"--- {datetime.now().strftime('%H:%M:%S')} ({len(records)} projects)")
        _print_records(coordinator)

    subscription = coordinator.subscribe(on_change)
    _print_records(coordinator)
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        pass
    finally:
        subscription.unsubscribe()
        await coordinator.close()
    return 0


async def cmd_team_list(args: argparse.Namespace) -> int:
    """List team members grouped by department."""
    coordinator = await open_session(load_config(args.config), TEAM_MEMBERS)
    try:
        members = coordinator.ordered_records()
    finally:
        await coordinator.close()

    if not members:
        print("No team members.")
        return 0

    for department, group in group_by_department(members).items():
        print(f"{department}:")
        for member in group:
            details = ", ".join(v for v in (member.get("role"), member.get("email")) if v)
            suffix = f" ({details})" if details else ""
            print(f"  {member['id']}  {member['name']}{suffix}")
    return 0


async def cmd_team_add(args: argparse.Namespace) -> int:
    """Add a team member."""
    coordinator = await open_session(load_config(args.config), TEAM_MEMBERS)
    try:
        member = await coordinator.create(
            {
                "name": args.name,
                "email": args.email,
                "role": args.role,
                "department": args.department,
            }
        )
        print(f"Created {member['id']}: {member['name']}")
    finally:
        await coordinator.close()
    return 0


async def cmd_team_remove(args: argparse.Namespace) -> int:
    """Remove a team member."""
    coordinator = await open_session(load_config(args.config), TEAM_MEMBERS)
    try:
        member = await coordinator.delete(args.id)
        print(f"Deleted {member['id']}: {member.get('name', '')}")
    finally:
        await coordinator.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="syncfolio",
        description="Local-first project tracker synchronized with a remote document store",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    list_parser = subparsers.add_parser("list", help="List projects")
    list_parser.set_defaults(func=cmd_list)

    add_parser = subparsers.add_parser("add", help="Create a project")
    add_parser.add_argument("name", help="Project name")
    add_parser.add_argument("--client", default="", help="Client name")
    add_parser.add_argument("--status", default="discovery", help="Initial status")
    add_parser.set_defaults(func=cmd_add)

    remove_parser = subparsers.add_parser("remove", help="Delete a project")
    remove_parser.add_argument("id", help="Project id")
    remove_parser.set_defaults(func=cmd_remove)

    export_parser = subparsers.add_parser("export", help="Export projects as JSON")
    export_parser.add_argument("-o", "--output", default=None, help="Write to file instead of stdout")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Replace projects from a JSON file")
    import_parser.add_argument("file", help="JSON file produced by export")
    import_parser.set_defaults(func=cmd_import)

    upload_parser = subparsers.add_parser(
        "upload-local", help="Upload locally cached projects after signing in"
    )
    upload_parser.set_defaults(func=cmd_upload_local)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    watch_parser = subparsers.add_parser("watch", help="Follow remote changes")
    watch_parser.set_defaults(func=cmd_watch)

    team_parser = subparsers.add_parser("team", help="Manage team members")
    team_subparsers = team_parser.add_subparsers(dest="team_command", required=True)

    team_list_parser = team_subparsers.add_parser("list", help="List team members by department")
    team_list_parser.set_defaults(func=cmd_team_list)

    team_add_parser = team_subparsers.add_parser("add", help="Add a team member")
    team_add_parser.add_argument("name", help="Member name")
    team_add_parser.add_argument("--email", default="", help="Email address")
    team_add_parser.add_argument("--role", default="", help="Role or title")
    team_add_parser.add_argument("--department", default="", help="Department")
    team_add_parser.set_defaults(func=cmd_team_add)

    team_remove_parser = team_subparsers.add_parser("remove", help="Remove a team member")
    team_remove_parser.add_argument("id", help="Team member id")
    team_remove_parser.set_defaults(func=cmd_team_remove)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except SyncfolioError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
