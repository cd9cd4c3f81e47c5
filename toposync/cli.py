"""Command-line entry point.

    python -m toposync compile lab.clab.yml [--inventory inventory.json] [--output graph.json]
    python -m toposync save lab.clab.yml graph.json [--view]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from toposync.logging_config import setup_logging
from toposync.schemas import Inventory, dump_graph_payload
from toposync.services.session import TopologySession
from toposync.state import EditorMode

_inventory_adapter: TypeAdapter[Inventory] = TypeAdapter(Inventory)


def load_inventory(path: str | None) -> Inventory | None:
    if not path:
        return None
    return _inventory_adapter.validate_json(Path(path).read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="toposync", description="Sync topology files with editor graphs.")
    parser.add_argument("--log-level", help="Override TOPOSYNC_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    compile_p = sub.add_parser("compile", help="Print the graph payload for a topology file")
    compile_p.add_argument("topology", help="Topology YAML file")
    compile_p.add_argument("--inventory", help="JSON map of lab name to discovered containers")
    compile_p.add_argument("--output", help="Write the payload here instead of stdout")

    save_p = sub.add_parser("save", help="Apply a graph payload to a topology file")
    save_p.add_argument("topology", help="Topology YAML file")
    save_p.add_argument("payload", help="Graph payload JSON file")
    save_p.add_argument("--view", action="store_true", help="Only update annotations (view mode)")
    return parser


async def _compile(args: argparse.Namespace) -> int:
    session = TopologySession(args.topology, inventory=load_inventory(args.inventory))
    result = await session.load()
    if not result.success:
        print(f"[error] {result.error}", file=sys.stderr)
        return 1
    for warning in result.warnings:
        print(f"[warn] {warning}", file=sys.stderr)

    output = json.dumps(dump_graph_payload(result.elements), indent=2)
    if args.output:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
    else:
        print(output)
    return 0


async def _save(args: argparse.Namespace) -> int:
    mode = EditorMode.VIEW if args.view else EditorMode.EDIT
    session = TopologySession(args.topology, mode=mode)
    # View mode still loads so existing annotations are merged, not replaced
    loaded = await session.load()
    if not loaded.success:
        print(f"[error] {loaded.error}", file=sys.stderr)
        return 1

    payload = Path(args.payload).read_text(encoding="utf-8")
    result = await session.save(payload)
    if not result.success:
        print(f"[error] {result.error}", file=sys.stderr)
        return 1
    for key in result.skipped_links:
        print(f"[warn] link {key} skipped: missing required fields", file=sys.stderr)
    for old, new in result.renamed_nodes.items():
        print(f"[info] renamed {old} -> {new}")
    if not result.document_written and mode == EditorMode.EDIT:
        print("[info] no topology changes")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        if args.command == "compile":
            return asyncio.run(_compile(args))
        return asyncio.run(_save(args))
    except (OSError, ValidationError, json.JSONDecodeError) as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
