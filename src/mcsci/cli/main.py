from __future__ import annotations

import argparse


def main() -> None:
    p = argparse.ArgumentParser(prog="mcsci", description="MCSCI v0 protocol server and client")
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    p_serve = sub.add_parser("serve", help="Run the server (TCP, or stdio with --stdio)")
    p_serve.add_argument("--stdio", action="store_true")
    p_serve.add_argument("--config", default="", help="Path to server config YAML")
    p_serve.add_argument("--host", default="")
    p_serve.add_argument("--port", default="")
    p_serve.add_argument("--transcript-dir", default="")
    p_serve.set_defaults(_entry="mcsci.cli.serve")

    # call
    p_call = sub.add_parser("call", help="Send command lines to a running server")
    p_call.add_argument("lines", nargs="+")
    p_call.add_argument("--host", default="")
    p_call.add_argument("--port", default="")
    p_call.set_defaults(_entry="mcsci.cli.call")

    args = p.parse_args()

    if args._entry == "mcsci.cli.serve":
        from mcsci.cli.serve import main as _m

        argv = []
        if args.stdio:
            argv.append("--stdio")
        if args.config:
            argv += ["--config", args.config]
        if args.transcript_dir:
            argv += ["--transcript-dir", args.transcript_dir]
        if args.host:
            argv += ["--host", args.host]
        if args.port:
            argv += ["--port", str(args.port)]
        _m(argv)
        return

    if args._entry == "mcsci.cli.call":
        from mcsci.cli.call import main as _m

        argv = list(args.lines)
        if args.host:
            argv += ["--host", args.host]
        if args.port:
            argv += ["--port", str(args.port)]
        _m(argv)
        return

    raise SystemExit(2)
