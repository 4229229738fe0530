import argparse
import asyncio
import json
import sys
from pathlib import Path

from docsync import __version__
from docsync.config import SyncSettings, configure_logging
from docsync.diff import compute_diff, summarize
from docsync.errors import DocSyncError
from docsync.export import export_docx
from docsync.ingest import extract_text
from docsync.models import ChangeType, DeletedStyle, HighlightOptions
from docsync.redline.requests import body_end_index, translate_changes
from docsync.redline.suggestions import SuggestionManager
from docsync.remote.local import LocalDocumentService


def _read_text(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _store(args) -> LocalDocumentService:
    return LocalDocumentService(args.store)


def _manager(args) -> SuggestionManager:
    return SuggestionManager(_store(args), settings=args.settings)


def handle_diff(args):
    result = compute_diff(_read_text(args.original), _read_text(args.modified))

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    print(summarize(result), file=sys.stderr)
    for change in result.actionable_changes():
        if change.type == ChangeType.ADDED:
            print(f"[+] {change.new_content}")
        elif change.type == ChangeType.DELETED:
            print(f"[-] {change.old_content}")
        else:
            print(f"[~] '{change.old_content}' -> '{change.new_content}'")


def handle_plan(args):
    original = _read_text(args.original)
    result = compute_diff(original, _read_text(args.modified))
    payloads = translate_changes(
        result.actionable_changes(),
        suggestion_mode=not args.direct,
        index_offset=args.settings.index_offset,
        end_index=body_end_index(original, args.settings.index_offset),
    )
    print(json.dumps(payloads, indent=2))
    print(f"Planned {len(payloads)} requests.", file=sys.stderr)


def handle_create(args):
    text = _read_text(args.input) if args.input else ""
    document_id = _store(args).create_document(args.title, text, document_id=args.id)
    print(document_id)


def handle_sync(args):
    options = HighlightOptions(deleted_style=DeletedStyle(args.deleted_style))
    result = asyncio.run(
        _manager(args).incremental_update(
            args.document_id,
            _read_text(args.modified),
            suggestion_mode=not args.direct,
            highlight=not args.no_highlight,
            options=options,
        )
    )
    print(summarize(result), file=sys.stderr)
    print(f"✅ Synchronized {args.document_id}", file=sys.stderr)


def handle_accept(args):
    removed = asyncio.run(_manager(args).accept_all(args.document_id))
    print(f"✅ Accepted all suggestions ({removed} ranges removed).", file=sys.stderr)


def handle_reject(args):
    removed = asyncio.run(_manager(args).reject_all(args.document_id))
    print(f"✅ Rejected all suggestions ({removed} ranges removed).", file=sys.stderr)


def handle_clear(args):
    asyncio.run(_manager(args).clear_highlights(args.document_id))
    print("✅ Highlights cleared.", file=sys.stderr)


def handle_show(args):
    document = asyncio.run(_store(args).get_document(args.document_id))
    if args.json:
        print(json.dumps(document, indent=2))
    else:
        print(extract_text(document), end="")


def handle_export(args):
    document = asyncio.run(_store(args).get_document(args.document_id))
    output_path = args.output or Path(f"{args.document_id}.docx")
    export_docx(document, output_path)
    print(f"✅ Saved to {output_path}", file=sys.stderr)


def main():
    settings = SyncSettings()

    parser = argparse.ArgumentParser(prog="docsync", description="Docsync: incremental document synchronization")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--store",
        type=Path,
        default=settings.store_path,
        help=f"Local document store directory (default: {settings.store_path})",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_diff = subparsers.add_parser("diff", help="Compare two text files line by line")
    p_diff.add_argument("original", type=Path, help="Original text file")
    p_diff.add_argument("modified", type=Path, help="Modified text file")
    p_diff.add_argument("--json", action="store_true", help="Output the full diff result as JSON")
    p_diff.set_defaults(func=handle_diff)

    p_plan = subparsers.add_parser("plan", help="Print the edit requests that turn one text file into another")
    p_plan.add_argument("original", type=Path, help="Original text file")
    p_plan.add_argument("modified", type=Path, help="Modified text file")
    p_plan.add_argument("--direct", action="store_true", help="Delete removed lines instead of striking them")
    p_plan.set_defaults(func=handle_plan)

    p_create = subparsers.add_parser("create", help="Create a document in the local store")
    p_create.add_argument("title", help="Document title")
    p_create.add_argument("input", type=Path, nargs="?", help="Initial text file")
    p_create.add_argument("--id", help="Document id (default: generated)")
    p_create.set_defaults(func=handle_create)

    p_sync = subparsers.add_parser("sync", help="Bring a stored document up to date with a text file")
    p_sync.add_argument("document_id", help="Document id")
    p_sync.add_argument("modified", type=Path, help="Desired text file")
    p_sync.add_argument("--direct", action="store_true", help="Apply deletions directly instead of suggesting")
    p_sync.add_argument("--no-highlight", action="store_true", help="Do not mark the applied changes")
    p_sync.add_argument(
        "--deleted-style",
        choices=[s.value for s in DeletedStyle],
        default=DeletedStyle.STRIKETHROUGH.value,
        help="How suggested deletions are marked (default: %(default)s)",
    )
    p_sync.set_defaults(func=handle_sync)

    p_accept = subparsers.add_parser("accept", help="Accept all pending suggestions")
    p_accept.add_argument("document_id", help="Document id")
    p_accept.set_defaults(func=handle_accept)

    p_reject = subparsers.add_parser("reject", help="Reject all pending suggestions")
    p_reject.add_argument("document_id", help="Document id")
    p_reject.set_defaults(func=handle_reject)

    p_clear = subparsers.add_parser("clear", help="Remove every suggestion marker, keeping the text")
    p_clear.add_argument("document_id", help="Document id")
    p_clear.set_defaults(func=handle_clear)

    p_show = subparsers.add_parser("show", help="Print a stored document")
    p_show.add_argument("document_id", help="Document id")
    p_show.add_argument("--json", action="store_true", help="Print the structured read-back instead of text")
    p_show.set_defaults(func=handle_show)

    p_export = subparsers.add_parser("export", help="Export a stored document to DOCX")
    p_export.add_argument("document_id", help="Document id")
    p_export.add_argument("-o", "--output", type=Path, help="Output DOCX path (default: <document_id>.docx)")
    p_export.set_defaults(func=handle_export)

    args = parser.parse_args()
    configure_logging(args.log_level)
    args.settings = settings

    try:
        args.func(args)
    except DocSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
