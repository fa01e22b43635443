# ===== Part 1: Imports & Logging ============================================
import argparse
import getpass
import json
import logging
import sqlite3
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from modules.borescope import BorescopeService
from modules.borescope.exceptions import BorescopeError, PermissionDenied

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ===== Part 2: Command handlers =============================================
def _print_json(value: object) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False, default=str))


def _capability(service: BorescopeService, args: argparse.Namespace):
    password = args.password if args.password is not None else getpass.getpass("Admin password: ")
    capability = service.verify_password(password)
    if capability is None:
        raise PermissionDenied("Incorrect Password")
    return capability


def cmd_list(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(service.list_records(args.limit))


def cmd_fleet(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(
        {
            "tails": service.list_tails(),
            "engines": service.list_engines(),
            "assignments": [asdict(a) for a in service.list_assignments()],
        }
    )


def cmd_attach(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(asdict(service.attach_engine_to_tail(args.tail, args.engine)))


def cmd_detach(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json({"detached": service.detach_tail(args.tail)})


def cmd_backup(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(asdict(service.create_backup(args.out)))


def cmd_backup_status(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(asdict(service.last_backup_info()))


def cmd_restore(service: BorescopeService, args: argparse.Namespace) -> None:
    _print_json(asdict(service.restore_backup(args.file)))


def cmd_export_tail(service: BorescopeService, args: argparse.Namespace) -> None:
    result = service.export_tail_package(
        args.values, args.date_from, args.date_to, args.out, capability=_capability(service, args)
    )
    _print_json(asdict(result))


def cmd_export_engine(service: BorescopeService, args: argparse.Namespace) -> None:
    result = service.export_engine_package(
        args.values, args.date_from, args.date_to, args.out, capability=_capability(service, args)
    )
    _print_json(asdict(result))


def cmd_import(service: BorescopeService, args: argparse.Namespace) -> None:
    result = service.import_package(args.file, capability=_capability(service, args))
    _print_json(asdict(result))


# ===== Part 3: Argument parser ==============================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Borescope inspection data store")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List visible inspection records")
    p.add_argument("--limit", type=int, default=5000)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("fleet", help="Show tails, engines and assignment history")
    p.set_defaults(func=cmd_fleet)

    p = sub.add_parser("attach", help="Attach an engine to a tail")
    p.add_argument("tail")
    p.add_argument("engine")
    p.set_defaults(func=cmd_attach)

    p = sub.add_parser("detach", help="Detach the engine from a tail")
    p.add_argument("tail")
    p.set_defaults(func=cmd_detach)

    p = sub.add_parser("backup", help="Write a full backup")
    p.add_argument("--out", type=Path, default=None, help="Backup file path")
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("backup-status", help="Show when the last backup was taken")
    p.set_defaults(func=cmd_backup_status)

    p = sub.add_parser("restore", help="Restore a full backup")
    p.add_argument("file", type=Path)
    p.set_defaults(func=cmd_restore)

    for name, func, label in (
        ("export-tail", cmd_export_tail, "tail numbers"),
        ("export-engine", cmd_export_engine, "engine serial numbers"),
    ):
        p = sub.add_parser(name, help=f"Export a package for one or more {label}")
        p.add_argument("values", nargs="+")
        p.add_argument("--from", dest="date_from", default=None, help="First inspection date (YYYY-MM-DD)")
        p.add_argument("--to", dest="date_to", default=None, help="Last inspection date (YYYY-MM-DD)")
        p.add_argument("--out", type=Path, default=None, help="Package file path")
        p.add_argument("--password", default=None)
        p.set_defaults(func=func)

    p = sub.add_parser("import", help="Import a tail or engine package")
    p.add_argument("file", type=Path)
    p.add_argument("--password", default=None)
    p.set_defaults(func=cmd_import)
    return parser


# ===== Part 4: Entrypoint ===================================================
def main(argv: Optional[List[str]] = None, service: Optional[BorescopeService] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    service = service or BorescopeService()
    try:
        service.initialize()
    except (sqlite3.Error, BorescopeError, OSError) as exc:
        logger.critical("Database initialization failed: %s", exc)
        print(f"Database initialization failed: {exc}", file=sys.stderr)
        return 1

    try:
        args.func(service, args)
    except (sqlite3.Error, BorescopeError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    finally:
        service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
