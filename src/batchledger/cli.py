"""Batch ledger CLI: command-line interface to the service facade.

Usage:
    python -m batchledger.cli status
    python -m batchledger.cli --as acme create-batch --external-id 0x01 \
        --uri ipfs://meta/1 --metadata-file batch1.json
    python -m batchledger.cli --as operator advance --batch 1 --state in_transit
    python -m batchledger.cli --as deployer set-supplier --account acme
    python -m batchledger.cli --as acme create-notice --batch 1 --type quality \
        --severity high --summary "Leak detected" --anchor 0xabc...
    python -m batchledger.cli --as acme submit-notice --id 1
    python -m batchledger.cli --as regulator approve-notice --id 1 --note confirmed
    python -m batchledger.cli verify-root --batch 1 --root 0xabc...
    python -m batchledger.cli compute-root docs/*.pdf

Every mutating command acts as the identity given with --as.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from batchledger.config import LedgerConfig
from batchledger.crypto.digest import hash_document
from batchledger.crypto.merkle import MerkleTree
from batchledger.service import ServiceResult, SupplyChainService


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _make_service(args: argparse.Namespace) -> SupplyChainService:
    """Create a SupplyChainService with durable persistence."""
    config = LedgerConfig.from_config_dir(args.config)
    if args.data is not None:
        config = config.with_overrides({"BATCHLEDGER_DATA_DIR": str(args.data)})
    return SupplyChainService.from_config(config)


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message.format(**result.data))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _parse_time(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


# ----------------------------------------------------------------------
# Batch registry
# ----------------------------------------------------------------------

def cmd_create_batch(args: argparse.Namespace) -> int:
    if args.metadata_file is not None:
        metadata_hash = hash_document(args.metadata_file)
    elif args.metadata_hash:
        metadata_hash = args.metadata_hash
    else:
        print("Failed: one of --metadata-hash or --metadata-file is required", file=sys.stderr)
        return 1
    service = _make_service(args)
    result = service.create_batch(args.caller, args.external_id, args.uri, metadata_hash)
    return _report(result, "Created batch: {batch_id}")


def cmd_advance(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.advance_lifecycle(args.caller, args.batch, args.state)
    return _report(result, "Batch {batch_id} is now {state}")


def cmd_recall(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.recall_batch(args.caller, args.batch, args.reason)
    return _report(result, "Batch {batch_id} recalled")


def cmd_update_metadata(args: argparse.Namespace) -> int:
    metadata_hash = (
        hash_document(args.metadata_file) if args.metadata_file is not None
        else args.metadata_hash
    )
    service = _make_service(args)
    result = service.update_metadata(args.caller, args.batch, args.uri, metadata_hash or "")
    return _report(result, "Batch {batch_id} metadata: {metadata_uri} ({metadata_hash})")


def cmd_set_operator(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_operator(args.caller, args.operator)
    return _report(result, "Operator: {operator}")


def cmd_show_batch(args: argparse.Namespace) -> int:
    service = _make_service(args)
    batch = service.get_batch(args.batch)
    if batch is None:
        print(f"Failed: Batch not found: {args.batch}", file=sys.stderr)
        return 1
    data = asdict(batch)
    data["root"] = service.get_root(args.batch)
    data["notices"] = service.notices_for_batch(args.batch)
    print(json.dumps(data, indent=2, default=_json_default))
    return 0


# ----------------------------------------------------------------------
# Roles
# ----------------------------------------------------------------------

def cmd_set_regulator(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_regulator(args.caller, args.regulator)
    return _report(result, "Regulator: {regulator}")


def cmd_set_supplier(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_supplier(args.caller, args.account, not args.revoke)
    return _report(result, "{role} {account}: enabled={enabled}")


def cmd_set_retailer(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_retailer(args.caller, args.account, not args.revoke)
    return _report(result, "{role} {account}: enabled={enabled}")


# ----------------------------------------------------------------------
# Notices
# ----------------------------------------------------------------------

def cmd_create_notice(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.create_notice(
        args.caller,
        args.batch,
        args.notice_type,
        args.severity,
        _parse_time(args.effective_from),
        args.summary,
        details_uri=args.details_uri,
        anchor=args.anchor,
    )
    return _report(result, "Created notice: {notice_id} (batch {batch_id})")


def cmd_submit_notice(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.submit_notice(args.caller, args.id)
    return _report(result, "Notice {notice_id}: {status}")


def cmd_approve_notice(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.approve_notice(args.caller, args.id, args.note)
    return _report(result, "Notice {notice_id}: {status} (anchor pushed: {anchor_pushed})")


def cmd_reject_notice(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.reject_notice(args.caller, args.id, args.note)
    return _report(result, "Notice {notice_id}: {status}")


def cmd_show_notice(args: argparse.Namespace) -> int:
    service = _make_service(args)
    view = service.get_notice(args.id)
    if view is None:
        print(f"Failed: Missing notice {args.id}", file=sys.stderr)
        return 1
    data = asdict(view.notice)
    data["ack_count"] = view.ack_count
    data["anchor_verified"] = service.anchor_verified_on_merkle(args.id)
    print(json.dumps(data, indent=2, default=_json_default))
    return 0


def cmd_list_notices(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.notices_for_batch(args.batch)))
    return 0


# ----------------------------------------------------------------------
# Roots
# ----------------------------------------------------------------------

def cmd_submit_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.submit_root(args.caller, args.batch, args.root)
    return _report(result, "Batch {batch_id} root: {root}")


def cmd_verify_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    ok = service.verify_root(args.batch, args.root)
    print("verified" if ok else "mismatch")
    return 0 if ok else 1


def cmd_anchor_verified(args: argparse.Namespace) -> int:
    service = _make_service(args)
    ok = service.anchor_verified_on_merkle(args.id)
    print("verified" if ok else "not verified")
    return 0 if ok else 1


def cmd_compute_root(args: argparse.Namespace) -> int:
    """Merkle root over the digests of the given documents."""
    tree = MerkleTree()
    for path in args.files:
        tree.add_leaf(hash_document(path))
    print(tree.compute_root())
    return 0


def cmd_hash_document(args: argparse.Namespace) -> int:
    print(hash_document(args.file))
    return 0


def cmd_events(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.subject:
        events = service.events_for(args.subject)
    else:
        events = service.event_log.events()
    for event in events:
        print(json.dumps(event.to_dict(), sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="batchledger", description="Batch ledger CLI")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    parser.add_argument("--data", type=Path, default=None, help="Override data directory")
    parser.add_argument("--as", dest="caller", default="", help="Acting identity")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("status")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("create-batch")
    p.add_argument("--external-id", required=True)
    p.add_argument("--uri", required=True)
    p.add_argument("--metadata-hash")
    p.add_argument("--metadata-file", type=Path)
    p.set_defaults(func=cmd_create_batch)

    p = sub.add_parser("advance")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--state", required=True)
    p.set_defaults(func=cmd_advance)

    p = sub.add_parser("recall")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--reason", required=True)
    p.set_defaults(func=cmd_recall)

    p = sub.add_parser("update-metadata")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--uri", required=True)
    p.add_argument("--metadata-hash")
    p.add_argument("--metadata-file", type=Path)
    p.set_defaults(func=cmd_update_metadata)

    p = sub.add_parser("set-operator")
    p.add_argument("--operator", required=True)
    p.set_defaults(func=cmd_set_operator)

    p = sub.add_parser("show-batch")
    p.add_argument("--batch", type=int, required=True)
    p.set_defaults(func=cmd_show_batch)

    p = sub.add_parser("set-regulator")
    p.add_argument("--regulator", required=True)
    p.set_defaults(func=cmd_set_regulator)

    for name, func in (("set-supplier", cmd_set_supplier), ("set-retailer", cmd_set_retailer)):
        p = sub.add_parser(name)
        p.add_argument("--account", required=True)
        p.add_argument("--revoke", action="store_true")
        p.set_defaults(func=func)

    p = sub.add_parser("create-notice")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--type", dest="notice_type", default="other")
    p.add_argument("--severity", default="medium")
    p.add_argument("--effective-from", help="ISO-8601 timestamp (default: now)")
    p.add_argument("--summary", required=True)
    p.add_argument("--details-uri", default="")
    p.add_argument("--anchor")
    p.set_defaults(func=cmd_create_notice)

    p = sub.add_parser("submit-notice")
    p.add_argument("--id", type=int, required=True)
    p.set_defaults(func=cmd_submit_notice)

    for name, func in (("approve-notice", cmd_approve_notice), ("reject-notice", cmd_reject_notice)):
        p = sub.add_parser(name)
        p.add_argument("--id", type=int, required=True)
        p.add_argument("--note", default="")
        p.set_defaults(func=func)

    p = sub.add_parser("show-notice")
    p.add_argument("--id", type=int, required=True)
    p.set_defaults(func=cmd_show_notice)

    p = sub.add_parser("list-notices")
    p.add_argument("--batch", type=int, required=True)
    p.set_defaults(func=cmd_list_notices)

    p = sub.add_parser("submit-root")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--root", required=True)
    p.set_defaults(func=cmd_submit_root)

    p = sub.add_parser("verify-root")
    p.add_argument("--batch", type=int, required=True)
    p.add_argument("--root", required=True)
    p.set_defaults(func=cmd_verify_root)

    p = sub.add_parser("anchor-verified")
    p.add_argument("--id", type=int, required=True)
    p.set_defaults(func=cmd_anchor_verified)

    p = sub.add_parser("compute-root")
    p.add_argument("files", type=Path, nargs="+")
    p.set_defaults(func=cmd_compute_root)

    p = sub.add_parser("hash-document")
    p.add_argument("file", type=Path)
    p.set_defaults(func=cmd_hash_document)

    p = sub.add_parser("events")
    p.add_argument("--subject", help='Entity filter, e.g. "batch:1"')
    p.set_defaults(func=cmd_events)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (ValueError, OSError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
