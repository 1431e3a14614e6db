from __future__ import annotations

import argparse
from pathlib import Path

from mcsci.config import load_settings
from mcsci.server.server import McsciServer


def main(argv: list[str] | None = None) -> None:
    s = load_settings()
    ap = argparse.ArgumentParser(prog="mcsci serve", description="Run the MCSCI v0 server")
    ap.add_argument("--stdio", action="store_true", help="Serve one connection on stdin/stdout")
    ap.add_argument("--config", default="", help="Server config YAML (defaults to the lookup chain)")
    ap.add_argument("--host", default=s.host)
    ap.add_argument("--port", type=int, default=s.port)
    ap.add_argument("--transcript-dir", default="", help="Write JSONL/CSV transcripts under this dir")
    args = ap.parse_args(argv)

    config_path = Path(args.config) if args.config else s.server_config
    transcript_dir = Path(args.transcript_dir) if args.transcript_dir else s.transcript_dir
    try:
        server = McsciServer(args.host, args.port, config_path=config_path, transcript_dir=transcript_dir)
    except ValueError as e:
        raise SystemExit(f"[MCSCI] {e}") from e

    if args.stdio:
        server.serve_stdio()
        return
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("[MCSCI] KeyboardInterrupt -> stopping")
        server.stop()


if __name__ == "__main__":
    main()
