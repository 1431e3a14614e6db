from __future__ import annotations

import argparse

from mcsci.client.client import McsciClient
from mcsci.config import load_settings
from mcsci.protocol.responses import render


def main(argv: list[str] | None = None) -> None:
    """Send command lines to a running server and print every line received."""
    s = load_settings()
    ap = argparse.ArgumentParser(prog="mcsci call", description="Send MCSCI commands to a server")
    ap.add_argument("lines", nargs="+", help='Command lines, e.g. hello "list-types 0"')
    ap.add_argument("--host", default=s.host)
    ap.add_argument("--port", type=int, default=s.port)
    ap.add_argument("--timeout-s", type=float, default=s.timeout_s)
    ap.add_argument("--linger-s", type=float, default=0.5, help="Wait for late out-of-band lines")
    args = ap.parse_args(argv)

    with McsciClient.connect(
        args.host,
        args.port,
        timeout_s=args.timeout_s,
        on_out_of_band=lambda r: print(f"  ~ {render(r)}"),
    ) as client:
        failed = False
        for line in args.lines:
            print(f"> {line}")
            result = client.call(line)
            if result.acked and result.response.kind != "ack":
                print("< ack")
            print(f"< {render(result.response)}")
            failed = failed or not result.ok
            if line.strip() == "quit":
                break
        client.pump(args.linger_s)
        for usage_id, payload in client.drain_extension_responses():
            print(f"  ~ extension-response {usage_id} {payload}")
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
