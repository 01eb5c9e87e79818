from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Node agent CLI")
    p.add_argument("--api", default="http://localhost:50051", help="Agent API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show instance status and managed containers")
    sub.add_parser("configure", help="Reconcile and push configuration now")

    s_ev = sub.add_parser("events", help="Show the agent event journal")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        r = requests.get(f"{base}/status", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "configure":
        # A pass may pull images, so allow it plenty of time.
        r = requests.post(f"{base}/configure", timeout=600)
        _print(r.json())
        return 0 if r.ok and not r.json().get("failures") else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
