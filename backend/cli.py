"""Command-line entry point: check, lock, migrate, init and serve canon repos."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from schemas.contract import SchemaVersionError
from schemas.models import RepoCheckReport
from services.check_service import check_succeeded, run_check, upgrade_hint
from services.config_service import ConfigError, init_repo
from services.lock_service import ComplianceError, LockError, LockService, update_story_refs
from services.migrate_service import MigrationService
from storage.fs_store import RepoStore

PASS = "✓"
FAIL = "✗"
SCHEMA_CHOICES = ["1.2", "1.3", "v1.2", "v1.3"]


def error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def print_report(report: RepoCheckReport) -> None:
    for story in report.stories:
        print(f"{PASS if story.all_pass else FAIL} {story.story_id}")
        for c in story.checks:
            msg = f" — {c.message}" if c.message else ""
            print(f"  {PASS if c.passed else FAIL} {c.id}{msg}")
    print()
    print(f"{report.passing_stories}/{report.total_stories} stories passing")


def cmd_check(args: argparse.Namespace) -> int:
    root = Path(args.dir)
    if not root.is_dir():
        return error(f"directory not found: {root.resolve()}")
    try:
        report = run_check(RepoStore(root), args.schema)
    except SchemaVersionError as e:
        hint = upgrade_hint(e)
        return error(hint or f"failed to read repo: {e}")
    except (OSError, ValueError) as e:
        return error(f"failed to read repo: {e}")

    if args.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    if report.total_stories == 0:
        return error("no stories found in stories/")
    if not args.json:
        print_report(report)
    return 0 if check_succeeded(report) else 1


def cmd_lock(args: argparse.Namespace) -> int:
    repo = RepoStore(Path(args.dir))
    try:
        lock = LockService().regenerate(repo, schema=args.schema, ignore_version_match=args.ignore_version_match)
        print("canon.lock.json updated")
        print(f"  commit: {lock['canon_commit']}")
        print(f"  hash:   {lock['worldbuilding_hash']}")
        if args.update_refs:
            updated = update_story_refs(repo, lock["canon_commit"], schema=args.schema)
            print(f"canon_ref updated in {len(updated)} stories")
    except ComplianceError as e:
        print(f"Error: {e}", file=sys.stderr)
        for story_id, ids in e.failures.items():
            print(f"  {story_id}: {', '.join(ids)}", file=sys.stderr)
        return 1
    except LockError as e:
        return error(str(e))
    except SchemaVersionError as e:
        return error(upgrade_hint(e) or f"failed to read repo: {e}")
    except (OSError, ValueError) as e:
        return error(f"failed to read repo: {e}")
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    try:
        result = MigrationService().run(RepoStore(Path(args.dir)), args.lang, apply=args.apply)
    except (ConfigError, FileNotFoundError, ValueError) as e:
        return error(str(e))

    if not args.apply:
        print("DRY RUN: no files will be modified. Use --apply to write changes.\n")
    for slug in result.skipped:
        print(f"  SKIP  {slug} (already v1.3)")
    for slug in result.migrated:
        if args.apply:
            print(f"  DONE  {slug}: v1.2 -> v1.3 (backup: metadata.json.v12.bak)")
        else:
            print(f"  WOULD {slug}: v1.2 -> v1.3 (lang={result.lang})")
    for slug, msg in result.errors.items():
        print(f"  ERROR {slug}: {msg}", file=sys.stderr)
    print()
    print(f"{len(result.migrated)} migrated, {len(result.skipped)} skipped, {len(result.errors)} errors")
    return 0 if result.ok else 1


def cmd_init(args: argparse.Namespace) -> int:
    root = Path(args.dir)
    root.mkdir(parents=True, exist_ok=True)
    created = init_repo(RepoStore(root))
    print("Canon repo initialized:")
    for rel in created:
        print(f"  {rel}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    if args.data_dir:
        os.environ["CANON_DATA_DIR"] = str(Path(args.data_dir).resolve())
    uvicorn.run("main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="canon", description="Canon worldbuilding compliance tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("check", help="Run canon compliance checks against a repo")
    p.add_argument("dir", nargs="?", default=".")
    p.add_argument("--schema", default=None, choices=SCHEMA_CHOICES, help="Metadata schema version: 1.2 (default) or 1.3")
    p.add_argument("--json", action="store_true", help="Print the report document as JSON")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("lock", help="Regenerate canon.lock.json from current canon/ contents")
    p.add_argument("dir", nargs="?", default=".")
    p.add_argument("--schema", default=None, choices=SCHEMA_CHOICES)
    p.add_argument("--update-refs", action="store_true", help="Point every story's canon_ref at the new commit")
    p.add_argument("--ignore-version-match", action="store_true", help="Do not let canon_version_match block the lock")
    p.set_defaults(func=cmd_lock)

    p = sub.add_parser("migrate", help="Migrate story metadata from v1.2 to v1.3")
    p.add_argument("dir", nargs="?", default=".")
    p.add_argument("--lang", default=None, help="Canonical language (defaults to .canonrc.json default_lang)")
    p.add_argument("--apply", action="store_true", help="Write changes (default: dry run)")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("init", help="Scaffold a new canon repo")
    p.add_argument("dir", nargs="?", default=".")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--data-dir", default=None)
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
