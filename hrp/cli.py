from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Header Routing Proxy CLI")
    p.add_argument("--api", default="http://localhost:8080", help="Proxy base URL")
    p.add_argument("--admin-prefix", default="/_hrp", help="Admin endpoints prefix")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("instances", help="Show the current directory snapshot")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    sub.add_parser("refresh", help="Trigger a directory refresh")

    s_res = sub.add_parser("resolve", help="Ask the proxy where a routing key goes")
    s_res.add_argument("--key", required=True)
    s_res.add_argument("--header", default="X-Org-ID")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    admin = f"{base}/{args.admin_prefix.strip('/')}"

    if args.cmd == "instances":
        _print(requests.get(f"{admin}/instances", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{admin}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "refresh":
        r = requests.post(f"{admin}/refresh", timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "resolve":
        r = requests.get(f"{base}/", headers={args.header: args.key}, allow_redirects=False, timeout=60)
        out = {"status": r.status_code}
        if r.is_redirect:
            out["location"] = r.headers.get("Location")
        else:
            try:
                out["detail"] = r.json().get("detail")
            except ValueError:
                out["detail"] = r.text
        _print(out)
        return 0 if r.is_redirect else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
