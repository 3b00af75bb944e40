from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from luart.debug.traceback import format_traceback

from .engine import Engine
from .errors import LuaException, LuaScriptException


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="luabridge", description="Run Lua scripts with access to Python types")
    parser.add_argument("script", nargs="?", help="Path to Lua script (.lua)")
    parser.add_argument("-e", "--execute", dest="inline", help="Execute Lua code string")
    parser.add_argument(
        "--import-type",
        dest="types",
        action="append",
        default=[],
        metavar="NAME",
        help="Expose a Python class (dotted name) as a global; may be repeated",
    )
    parser.add_argument(
        "--import-namespace",
        dest="namespaces",
        action="append",
        default=[],
        metavar="MODULE",
        help="Expose every public class of a module; may be repeated",
    )
    parser.add_argument("--print-output", action="store_true", help="Print the values returned by the chunk")
    parser.add_argument("--stack", action="store_true", help="Print Lua-style stack traceback on error")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    if args.inline and args.script:
        parser.error("cannot use script path and --execute together")
        return 1
    if not args.inline and not args.script:
        parser.error("missing script or --execute")
        return 1

    try:
        with Engine(echo_output=True) as engine:
            for name in args.types:
                engine.import_type(name)
            for module in args.namespaces:
                engine.import_namespace(module)
            if args.inline:
                results = engine.do_string(args.inline, chunk_name="=<inline>")
            else:
                results = engine.do_file(args.script)
            if args.print_output:
                for item in results:
                    print(item)
        return 0
    except (LuaException, OSError) as exc:
        if isinstance(exc, LuaScriptException) and args.stack and exc.frames:
            print(format_traceback(exc.frames), file=sys.stderr)
        print(f"Lua execution failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
