"""cli entrypoint for treekeeper."""

import argparse
import logging
import sys
from pathlib import Path

from .api.server import add_storage_arguments, build_backend
from .core.samples import BUILTIN_SAMPLES
from .core.scheduler import ManualScheduler
from .core.session import EditorSession
from .core.transfer import dumps_export, export_filename
from .core.workspaces import PersistenceContext


def _session(args) -> EditorSession:
    """session over the configured storage. timers only run when flushed on close."""
    context = PersistenceContext(
        backend=build_backend(args),
        scheduler=ManualScheduler(),
        namespace=args.namespace,
        save_delay=args.save_delay,
        snapshot_delay=args.snapshot_delay,
        snapshot_cap=args.snapshot_cap,
    )
    session = EditorSession(context)
    session.open()
    if getattr(args, "workspace", None):
        session.switch_workspace(args.workspace)
    return session


def cmd_serve(args) -> int:
    import uvicorn
    from .api import server

    server.configure(args)
    uvicorn.run(server.app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def cmd_export(args) -> int:
    session = _session(args)
    try:
        text = dumps_export(session.tree.state())
        if args.output == "-":
            print(text)
            return 0
        path = Path(args.output) if args.output else Path(export_filename(session.tree.title))
        path.write_text(text, encoding="utf-8")
        print(f"exported {session.tree.title!r} to {path}")
    finally:
        session.close()
    return 0


def cmd_import(args) -> int:
    raw = sys.stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
    session = _session(args)
    try:
        if args.new:
            session.create_workspace(args.new)
        outcome = session.import_data(raw)
        if not outcome.ok:
            print(f"import failed: {outcome.validation.error.value}", file=sys.stderr)
            return 1
        count = sum(1 for _ in session.tree.iter_nodes())
        print(f"imported {count} nodes into workspace {session.workspace_id}")
    finally:
        session.close()
    return 0


def cmd_workspaces(args) -> int:
    session = _session(args)
    try:
        for w in session.list_workspaces():
            marker = "*" if w.id == session.workspace_id else " "
            print(f"{marker} {w.id}  {w.name}  (updated {w.updated_at})")
    finally:
        session.close()
    return 0


def cmd_samples(args) -> int:
    for key, sample in BUILTIN_SAMPLES.items():
        print(f"{key:<14} {sample.description}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="treekeeper - typed node tree editor with workspaces and snapshots"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the api server")
    serve.add_argument("--host", default="127.0.0.1", help="host to bind")
    serve.add_argument("--port", "-p", type=int, default=8000, help="port to bind")
    add_storage_arguments(serve)
    serve.set_defaults(func=cmd_serve)

    export = sub.add_parser("export", help="write a workspace tree as json")
    export.add_argument("--output", "-o", help="output file, '-' for stdout (default: <title>.json)")
    export.add_argument("--workspace", "-w", help="workspace id (default: active)")
    add_storage_arguments(export)
    export.set_defaults(func=cmd_export)

    imp = sub.add_parser("import", help="replace a workspace tree with json data")
    imp.add_argument("file", help="json file to import, '-' for stdin")
    imp.add_argument("--workspace", "-w", help="workspace id (default: active)")
    imp.add_argument("--new", "-n", metavar="NAME", help="import into a new workspace with this name")
    add_storage_arguments(imp)
    imp.set_defaults(func=cmd_import)

    workspaces = sub.add_parser("workspaces", help="list workspaces")
    add_storage_arguments(workspaces)
    workspaces.set_defaults(func=cmd_workspaces)

    samples = sub.add_parser("samples", help="list built-in sample trees")
    samples.set_defaults(func=cmd_samples)

    args = parser.parse_args(argv)
    if args.command not in ("serve", "samples"):
        # the server configures logging itself
        logging.basicConfig(
            level=getattr(logging, args.log_level.upper(), logging.INFO),
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
