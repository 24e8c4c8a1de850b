"""
BlobDB: Document Store over Blob Backends
=========================================
Command-line entry point.

Usage:
    python main.py [options] COMMAND [args]

Default:
    Directory backend at ./blobdb_data
"""

import logging
import os
import sys
from typing import List, Optional


class UsageError(Exception):
    """Bad command line."""
    pass


def print_help(stream=None):
    print("""
BlobDB: Document Store over Blob Backends

Usage:
    python main.py [options] get C ID                 Print a document
    python main.py [options] put C ID --data TEXT     Write a document
    python main.py [options] put C ID --file PATH     Write a document from a file
    python main.py [options] delete C ID              Delete a document
    python main.py [options] ensure-index C FIELD     Index FIELD, backfilling C
    python main.py [options] fields C                 List indexed fields of C

Options:
    --help              Show this help
    --root DIR          Directory backend root (default: ./blobdb_data)
    --s3-bucket NAME    Use an S3 bucket instead of a directory
    --s3-endpoint URL   S3-compatible endpoint (with --s3-bucket)
    --region NAME       AWS region (with --s3-bucket)
    --content-type T    Content type for put (default: application/json)
    --raw               Print payloads exactly as stored
    --verbose           Log index activity to stderr

Environment:
    BLOBDB_* variables tune worker pools, deadlines and encryption.
""", file=stream or sys.stdout)


# Options that consume the following argument
_VALUE_OPTIONS = {
    "--root": "root",
    "--s3-bucket": "bucket",
    "--s3-endpoint": "endpoint",
    "--region": "region",
    "--content-type": "content_type",
    "--data": "data",
    "--file": "file",
}

_COMMAND_ARITY = {
    "get": 2,
    "put": 2,
    "delete": 2,
    "ensure-index": 2,
    "fields": 1,
}


def parse_args(args: List[str]) -> dict:
    """Split argv into options and positionals. Raises UsageError."""
    opts = {"raw": False, "verbose": False, "help": False}
    positionals = []

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in _VALUE_OPTIONS:
            if i + 1 >= len(args):
                raise UsageError(f"{arg} needs a value")
            opts[_VALUE_OPTIONS[arg]] = args[i + 1]
            i += 2
        elif arg in ("--help", "-h"):
            opts["help"] = True
            i += 1
        elif arg == "--raw":
            opts["raw"] = True
            i += 1
        elif arg == "--verbose":
            opts["verbose"] = True
            i += 1
        elif arg.startswith("-"):
            raise UsageError(f"Unknown option: {arg}")
        else:
            positionals.append(arg)
            i += 1

    if opts["help"]:
        return opts
    if not positionals:
        raise UsageError("No command given")

    command, rest = positionals[0], positionals[1:]
    if command not in _COMMAND_ARITY:
        raise UsageError(f"Unknown command: {command}")
    if len(rest) != _COMMAND_ARITY[command]:
        raise UsageError(
            f"{command} takes {_COMMAND_ARITY[command]} argument(s), got {len(rest)}")
    if "bucket" in opts and "root" in opts:
        raise UsageError("--root and --s3-bucket are mutually exclusive")

    opts["command"] = command
    opts["args"] = rest
    return opts


def open_backend(opts: dict):
    """Build the backend selected by the options."""
    if "bucket" in opts:
        from storage.s3 import S3Backend, make_client
        client = make_client(region=opts.get("region"), endpoint_url=opts.get("endpoint"))
        return S3Backend(opts["bucket"], client=client)

    from storage.filesystem import DirectoryBackend
    root = opts.get("root") or os.path.join(os.getcwd(), "blobdb_data")
    return DirectoryBackend(root)


def _read_payload(opts: dict) -> str:
    if "data" in opts and "file" in opts:
        raise UsageError("--data and --file are mutually exclusive")
    if "data" in opts:
        return opts["data"]
    if "file" in opts:
        if not os.path.isfile(opts["file"]):
            raise UsageError(f"payload file not found: {opts['file']}")
        with open(opts["file"], "r", encoding="utf-8") as f:
            return f.read()
    raise UsageError("put needs --data or --file")


def run_command(store, opts: dict, renderer) -> None:
    """Execute one parsed command against an open store."""
    command = opts["command"]
    args = opts["args"]

    if command == "get":
        renderer.render_payload(store.get(*args))
    elif command == "put":
        payload = _read_payload(opts)
        store.put(args[0], args[1], opts.get("content_type", "application/json"), payload)
        store.wait_for_indexing()
        renderer.render_message(f"wrote {args[0]}/{args[1]}")
    elif command == "delete":
        store.delete(*args)
        store.wait_for_indexing()
        renderer.render_message(f"deleted {args[0]}/{args[1]}")
    elif command == "ensure-index":
        report = store.ensure_indexed(*args)
        renderer.render_report(args[0], args[1], report)
    elif command == "fields":
        renderer.render_fields(store.indexed_fields(args[0]))


def main(argv: Optional[List[str]] = None) -> int:
    """Parse CLI arguments and dispatch. Returns the exit status."""
    from cli.renderer import Renderer
    from documents import DocumentStore, StoreSettings

    renderer = Renderer()

    try:
        opts = parse_args(sys.argv[1:] if argv is None else argv)
    except UsageError as e:
        renderer.render_error(e)
        print_help(sys.stderr)
        return 1

    if opts["help"]:
        print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if opts["verbose"] else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    renderer.pretty = not opts["raw"]

    try:
        with DocumentStore(open_backend(opts), StoreSettings.from_env()) as store:
            run_command(store, opts, renderer)
            faults = store.faults.total
    except Exception as e:
        renderer.render_error(e)
        return 1

    if faults:
        print(f"{faults} index maintenance fault(s); see log", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
