# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Entitlement CLI Commands

Admin tooling for the listing entitlement engine.

Commands:
- show-config: Print the effective listing limit settings
- update-config: Merge a JSON patch into the settings (optionally for one mode)
- evaluate: Show the publish decision for a user
- ledger: Show a user's remaining credit per source
- sponsorship: Show a user's sponsorship quota for the current month

Every command runs against a JSON fixture loaded into the in-memory store
(--fixture) or against Firestore with application default credentials
(--firestore).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import EntitlementError


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _build_store(args: argparse.Namespace):
    if args.firestore:
        import firebase_admin
        from firebase_admin import firestore

        from lazone_core.entitlements.adapters.firestore import FirestoreEntitlementsStore

        try:
            firebase_admin.get_app()
        except ValueError:
            firebase_admin.initialize_app()
        return FirestoreEntitlementsStore(firestore.client(), config=EntitlementsConfig.load_from_env())

    from lazone_core.entitlements.adapters.memory import InMemoryEntitlementsStore

    data = _load_json(args.fixture) if args.fixture else {}
    return InMemoryEntitlementsStore.from_fixture(data)


def _build_facade(args: argparse.Namespace):
    from lazone_core.entitlements.facade import EntitlementsFacade

    store = _build_store(args)
    return store, EntitlementsFacade(store=store, config=EntitlementsConfig.load_from_env())


def cmd_show_config(args: argparse.Namespace) -> int:
    """Print the effective settings (defaults when the record is missing)."""
    _, facade = _build_facade(args)
    snapshot = facade.settings.snapshot()
    if snapshot.degraded is not None:
        print(f"! {snapshot.degraded}", file=sys.stderr)
    if args.mode:
        _print_json(facade.get_mode_config(args.mode).to_dict())
    else:
        _print_json(snapshot.settings.to_dict())
    return 0


def cmd_update_config(args: argparse.Namespace) -> int:
    """Merge a JSON patch into the stored settings."""
    if args.patch_file:
        patch = _load_json(args.patch_file)
    else:
        patch = json.loads(args.patch)

    store, facade = _build_facade(args)
    updated = facade.update_config(patch, mode=args.mode)
    _print_json(updated.to_dict())

    if args.fixture and args.write:
        Path(args.fixture).write_text(
            json.dumps(store.to_fixture(), ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
        print(f"Fixture updated: {args.fixture}", file=sys.stderr)
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Show the publish decision for a user (read-only)."""
    _, facade = _build_facade(args)
    _print_json(facade.evaluator.explain(args.user_id, args.category, args.mode))
    return 0


def cmd_ledger(args: argparse.Namespace) -> int:
    """Show remaining credit per source."""
    _, facade = _build_facade(args)
    ledger = facade.get_ledger(args.user_id, args.mode)
    _print_json(ledger.to_dict())
    return 0


def cmd_sponsorship(args: argparse.Namespace) -> int:
    """Show sponsorship quota for the current calendar month."""
    _, facade = _build_facade(args)
    _print_json(facade.sponsorship_quota(args.user_id).to_dict())
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    store_opts = argparse.ArgumentParser(add_help=False)
    source = store_opts.add_mutually_exclusive_group()
    source.add_argument(
        "--fixture", "-f",
        help="JSON fixture loaded into the in-memory store",
    )
    source.add_argument(
        "--firestore",
        action="store_true",
        help="Use Firestore (application default credentials)",
    )
    store_opts.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at DEBUG level",
    )

    parser = argparse.ArgumentParser(
        prog="lazone-cli",
        description="Listing entitlement admin commands",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # show-config command
    show_parser = subparsers.add_parser(
        "show-config",
        parents=[store_opts],
        help="Print the effective listing limit settings",
    )
    show_parser.add_argument(
        "--mode", "-m",
        help="Only print the config of this mode (long_term | short_term)",
    )
    show_parser.set_defaults(func=cmd_show_config)

    # update-config command
    update_parser = subparsers.add_parser(
        "update-config",
        parents=[store_opts],
        help="Merge a JSON patch into the settings",
    )
    patch_source = update_parser.add_mutually_exclusive_group(required=True)
    patch_source.add_argument(
        "--patch", "-p",
        help='Inline JSON patch, e.g. \'{"enabled": false}\'',
    )
    patch_source.add_argument(
        "--patch-file",
        help="Path to a JSON patch file",
    )
    update_parser.add_argument(
        "--mode", "-m",
        help="Apply the patch to this mode's config",
    )
    update_parser.add_argument(
        "--write",
        action="store_true",
        help="Write the updated store back to the fixture file",
    )
    update_parser.set_defaults(func=cmd_update_config)

    # evaluate command
    evaluate_parser = subparsers.add_parser(
        "evaluate",
        parents=[store_opts],
        help="Show the publish decision for a user",
    )
    evaluate_parser.add_argument("user_id", help="User id")
    evaluate_parser.add_argument(
        "--category", "-c",
        help="User category (individual, owner, broker, agency or the French aliases)",
    )
    evaluate_parser.add_argument(
        "--mode", "-m",
        default="long_term",
        help="Listing mode (default: long_term)",
    )
    evaluate_parser.set_defaults(func=cmd_evaluate)

    # ledger command
    ledger_parser = subparsers.add_parser(
        "ledger",
        parents=[store_opts],
        help="Show a user's remaining credit per source",
    )
    ledger_parser.add_argument("user_id", help="User id")
    ledger_parser.add_argument(
        "--mode", "-m",
        default="long_term",
        help="Listing mode (default: long_term)",
    )
    ledger_parser.set_defaults(func=cmd_ledger)

    # sponsorship command
    sponsor_parser = subparsers.add_parser(
        "sponsorship",
        parents=[store_opts],
        help="Show a user's sponsorship quota",
    )
    sponsor_parser.add_argument("user_id", help="User id")
    sponsor_parser.set_defaults(func=cmd_sponsorship)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the entitlement CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    except (EntitlementError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
