"""CLI client for the blobsync admin database API."""

from __future__ import annotations

import argparse
import getpass
import os
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

DEFAULT_SERVER_URL = "http://localhost:8000"
SERVER_ENV_VAR = "BLOBSYNC_SERVER"
TOKEN_ENV_VAR = "BLOBSYNC_ADMIN_TOKEN"

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


class AdminClient:
    """Thin client for the /api/admin/database endpoints."""

    def __init__(
        self,
        server_url: str,
        token: str,
        *,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> AdminClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = self.client.request(method, f"/api/admin/database{path}", **kwargs)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def status(self) -> dict[str, Any]:
        return self._request("GET", "/sync")

    def sync(self, action: str, *, force: bool = False) -> dict[str, Any]:
        params: dict[str, str] = {"action": action}
        if force:
            params["force"] = "true"
        return self._request("POST", "/sync", params=params)

    def backup(self) -> dict[str, Any]:
        return self._request("POST", "/backup")

    def stats(self) -> dict[str, Any]:
        return self._request("GET", "/stats")

    def verify(self) -> dict[str, Any]:
        return self._request("POST", "/verify")


def _print_status(data: dict[str, Any]) -> None:
    print("Database Sync Status:")
    print(f"  Remote configured: {data['remote_configured']}")
    if data.get("bucket"):
        print(f"  Bucket:            {data['bucket']}")
    print(f"  Provider state:    {data['provider_state']}")
    print(f"  Startup decision:  {data.get('startup_decision') or '-'}")
    if data.get("bootstrap_outcome"):
        print(f"  Bootstrap:         {data['bootstrap_outcome']}")
    if data.get("uploads_suspended"):
        print(f"  UPLOADS SUSPENDED: {data.get('suspension_reason', '')}")

    local = data["local"]
    if local["exists"]:
        print(f"  Local:             {local['size']} bytes, modified {local['last_modified']}")
    else:
        print("  Local:             missing")
    remote = data.get("remote")
    if remote is not None:
        if remote["exists"]:
            print(
                f"  Remote:            {remote['size']} bytes, modified {remote['last_modified']}"
            )
        else:
            print(f"  Remote:            {remote.get('error') or 'missing'}")
    last = data.get("last_sync")
    if last is not None:
        print(f"  Last sync:         {last['action']} {last['outcome']} at {last['finished_at']}")


def _print_report(report: dict[str, Any]) -> None:
    line = f"{report['action']}: {report['outcome']}"
    if report.get("detail"):
        line += f" ({report['detail']})"
    print(line)


def _print_stats(stats: dict[str, Any]) -> None:
    print("Database Statistics:")
    print(f"  File size:   {stats['file_size']} bytes")
    print(f"  Pages:       {stats['page_count']} x {stats['page_size']} bytes")
    print(f"  Free pages:  {stats['freelist_count']}")
    for table, count in stats["tables"].items():
        print(f"    {table}: {count}")


def _error_detail(resp: httpx.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else resp.reason_phrase


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="blobsync-admin",
        description="Inspect and control database sync on a blobsync server",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get(SERVER_ENV_VAR, DEFAULT_SERVER_URL),
        help=f"Server URL (default: ${SERVER_ENV_VAR} or {DEFAULT_SERVER_URL})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--token", help=f"Admin token (default: ${TOKEN_ENV_VAR})")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("status", help="Show local and remote database state")
    push = subparsers.add_parser("push", help="Upload the live database to object storage")
    push.add_argument(
        "--force",
        action="store_true",
        help="Upload even while automatic uploads are suspended",
    )
    subparsers.add_parser("pull", help="Replace the live database with the remote copy")
    subparsers.add_parser("restore-backup", help="Replace the live database with the backup copy")
    subparsers.add_parser("backup", help="Write a local snapshot on the server")
    subparsers.add_parser("stats", help="Show table row counts and storage statistics")
    subparsers.add_parser("verify", help="Run a thorough integrity check")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    token = args.token or os.environ.get(TOKEN_ENV_VAR)
    if not token:
        token = getpass.getpass("Admin token: ")

    try:
        with AdminClient(server_url, token) as client:
            if args.command == "status":
                _print_status(client.status())
            elif args.command == "push":
                _print_report(client.sync("upload", force=args.force))
            elif args.command == "pull":
                _print_report(client.sync("download"))
            elif args.command == "restore-backup":
                _print_report(client.sync("restore-backup"))
            elif args.command == "backup":
                result = client.backup()
                print(f"Backup written to {result['path']} ({result['size']} bytes)")
            elif args.command == "stats":
                _print_stats(client.stats())
            elif args.command == "verify":
                result = client.verify()
                print(f"Integrity: {result['status']} ({result['detail']})")
                if result["status"] != "usable":
                    sys.exit(2)
    except httpx.HTTPStatusError as exc:
        print(f"Error: {exc.response.status_code} {_error_detail(exc.response)}")
        sys.exit(1)
    except httpx.HTTPError as exc:
        print(f"Error: could not reach {server_url}: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
