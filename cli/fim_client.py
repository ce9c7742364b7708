"""CLI client for the fimon file integrity monitoring service."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any
from urllib.parse import quote, urlparse

import httpx

DEFAULT_SERVER_URL = "http://127.0.0.1:8080"
SERVER_ENV = "FIMON_SERVER"
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


def file_url(path: str) -> str:
    """Build the API URL for one tracked path."""
    return "/api/files/" + quote(path, safe="")


class MonitorClient:
    """Thin HTTP client over the fimon API."""

    def __init__(self, server_url: str, transport: httpx.BaseTransport | None = None) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=30.0, transport=transport)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> MonitorClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def add(self, path: str, host_ip: str | None = None) -> dict[str, Any]:
        """Register a file and return its record."""
        payload: dict[str, str] = {"file_path": os.path.abspath(path)}
        if host_ip:
            payload["host_ip"] = host_ip
        resp = self.client.post("/api/files", json=payload)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def remove(self, path: str) -> str:
        """Deregister a file and return the server's message."""
        resp = self.client.delete(file_url(os.path.abspath(path)))
        resp.raise_for_status()
        message: str = resp.json()["message"]
        return message

    def list_files(self, include_deleted: bool = False) -> list[dict[str, Any]]:
        """List tracked files."""
        params = {"include_deleted": "true"} if include_deleted else None
        resp = self.client.get("/api/files", params=params)
        resp.raise_for_status()
        data: list[dict[str, Any]] = resp.json()["data"]
        return data

    def reconcile(self) -> dict[str, Any]:
        """Trigger a reconciliation sweep and return its statistics."""
        resp = self.client.post("/api/files/reconcile")
        resp.raise_for_status()
        stats: dict[str, Any] = resp.json()
        return stats


def _error_detail(resp: httpx.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else resp.reason_phrase


def _print_record(record: dict[str, Any]) -> None:
    if record["is_deleted"]:
        status = "deleted"
    elif record["latest_md5"] != record["original_md5"]:
        status = "modified"
    else:
        status = "ok"
    print(f"{record['id']:>5}  {status:<8}  {record['latest_md5']}  {record['file_path']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fimon-client",
        description="Manage files tracked by a fimon server",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get(SERVER_ENV, DEFAULT_SERVER_URL),
        help=f"Server URL (default: ${SERVER_ENV} or {DEFAULT_SERVER_URL})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    add_parser = subparsers.add_parser("add", help="Start monitoring a file")
    add_parser.add_argument("path")
    add_parser.add_argument("--host", help="Host identifier stored with the record")
    remove_parser = subparsers.add_parser("remove", help="Stop monitoring a file")
    remove_parser.add_argument("path")
    list_parser = subparsers.add_parser("list", help="List monitored files")
    list_parser.add_argument(
        "--all", action="store_true", dest="include_deleted", help="Include deleted files"
    )
    subparsers.add_parser("reconcile", help="Run a reconciliation sweep now")
    return parser


def main(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1

    with MonitorClient(server_url, transport=transport) as client:
        try:
            if args.command == "add":
                record = client.add(args.path, args.host)
                print(f"Monitoring {record['file_path']} (md5 {record['original_md5']})")
            elif args.command == "remove":
                print(client.remove(args.path))
            elif args.command == "list":
                records = client.list_files(include_deleted=args.include_deleted)
                for record in records:
                    _print_record(record)
                print(f"{len(records)} file(s)")
            elif args.command == "reconcile":
                stats = client.reconcile()
                print(
                    f"Checked {stats['checked']}: {stats['modified']} modified, "
                    f"{stats['deleted']} deleted, {stats['unchanged']} unchanged, "
                    f"{stats['failed']} failed"
                )
        except httpx.HTTPStatusError as exc:
            print(f"Error: {_error_detail(exc.response)} ({exc.response.status_code})")
            return 1
        except httpx.HTTPError as exc:
            print(f"Error: cannot reach {server_url}: {exc}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
