"""
Lambda profiler CLI (flat-layout friendly).

Usage
-----
lambdaprofiler metrics --tenant acme --functions fnA,fnB
lambdaprofiler metrics --tenant acme --functions fnA --start 2026-01-01T00:00:00Z --end 2026-01-01T01:00:00Z
lambdaprofiler serve --port 5000
"""

from __future__ import annotations

import argparse
import os
from typing import List, Optional


def _env_default(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    return v


def cmd_metrics(args: argparse.Namespace) -> None:
    import runner  # local import: keeps `serve --help` free of AWS config

    tenant = args.tenant or _env_default("TENANT_ID")
    if not tenant:
        raise SystemExit("Missing --tenant (or TENANT_ID env var).")
    if not args.functions:
        raise SystemExit("Missing --functions.")

    argv: List[str] = ["--tenant", tenant, "--functions", args.functions]
    if args.start:
        argv += ["--start", args.start]
    if args.end:
        argv += ["--end", args.end]
    if args.timeout is not None:
        argv += ["--timeout", str(args.timeout)]

    code = runner.main(argv)
    if code:
        raise SystemExit(code)


def cmd_serve(args: argparse.Namespace) -> None:
    from apps.flask_api.flask_app import create_app
    from infra.config import get_settings
    from infra.logging_config import setup_logging

    setup_logging()
    settings = get_settings()
    api = settings.api
    create_app(settings).run(host=args.host or api.host, port=int(args.port or api.port))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lambdaprofiler", description="Lambda profiler CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("metrics", help="Fetch metrics and cost estimates for a tenant's functions.")
    sp.add_argument("--tenant", default=None, help="Tenant id (or TENANT_ID env var).")
    sp.add_argument("--functions", default=None, help="Comma-separated Lambda function names.")
    sp.add_argument("--start", default=None, help="Window start (ISO-8601). Default: one hour ago")
    sp.add_argument("--end", default=None, help="Window end (ISO-8601). Default: now")
    sp.add_argument("--timeout", type=float, default=None, help="Request deadline in seconds.")
    sp.set_defaults(func=cmd_metrics)

    sp = sub.add_parser("serve", help="Run the Flask API (development server).")
    sp.add_argument("--host", default=None, help="Bind address (default: API__HOST).")
    sp.add_argument("--port", type=int, default=None, help="Port (default: API__PORT).")
    sp.set_defaults(func=cmd_serve)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
