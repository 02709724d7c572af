"""Command-line helper to fetch rows from a server-side command.

Settings come from the ROWFETCH_* environment variables (a local .env file is
loaded first); ``--base-url`` overrides ROWFETCH_BASE_URL.

Usage:
    python -m rowfetch.fetch_cli --command getUser --id-param userId --id 42
    python -m rowfetch.fetch_cli --command getOrders --id-param email --id a@b.c --string-id --param status=open
    python -m rowfetch.fetch_cli --url "https://example.com/app.php?command=listUsers&page=1"

"""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from typing import Any, List, Optional, Tuple

from dotenv import load_dotenv

from rowfetch.config import Settings, build_fetcher


def _parse_params(raw: Optional[List[str]]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for item in raw or []:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise ValueError(f"Invalid --param {item!r}: expected name=value")
        pairs.append((name, value))
    return pairs


def run_fetch(
    command: Optional[str] = None,
    id_param: Optional[str] = None,
    id: Optional[str] = None,
    params: Optional[List[Tuple[str, str]]] = None,
    string_id: bool = False,
    first: bool = False,
    url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Any:
    """Run a single blocking fetch (programmatic).

    Returns the rows, or the first row (None if absent) when first is True.
    """
    fetcher = build_fetcher(settings)
    try:
        if url:
            return fetcher.fetch_first_row(url) if first else fetcher.fetch_rows(url)

        if not command or not id_param or id is None:
            raise ValueError("--command, --id-param and --id are required unless --url is given")

        if string_id:
            op = fetcher.fetch_row_by_id_string if first else fetcher.fetch_rows_by_id_string
            return op(command, id_param, id, params)
        op = fetcher.fetch_row_by_id if first else fetcher.fetch_rows_by_id
        return op(command, id_param, int(id), params)
    finally:
        fetcher.transport.close()


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Fetch rows from a server-side command")
    p.add_argument("--command", required=False, help="Server-side command name")
    p.add_argument("--id-param", required=False, help="Name of the id parameter (e.g. userId)")
    p.add_argument("--id", required=False, help="Id value (integer unless --string-id)")
    p.add_argument("--param", action="append", help="Extra name=value parameter; repeatable")
    p.add_argument("--string-id", action="store_true", help="Treat --id as a string id")
    p.add_argument("--first", action="store_true", help="Print only the first row")
    p.add_argument("--url", required=False, help="Fetch a fully built request URL instead")
    p.add_argument("--base-url", required=False, help="Base URL (overrides ROWFETCH_BASE_URL)")
    p.add_argument("--log-level", required=False, help="Logging level (overrides ROWFETCH_LOG_LEVEL)")

    args = p.parse_args(argv)
    load_dotenv()
    try:
        settings = Settings.from_env()
        if args.base_url:
            settings = dataclasses.replace(settings, base_url=args.base_url)
        logging.basicConfig(
            level=(args.log_level or settings.log_level).upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        res = run_fetch(
            command=args.command,
            id_param=args.id_param,
            id=args.id,
            params=_parse_params(args.param),
            string_id=args.string_id,
            first=args.first,
            url=args.url,
            settings=settings,
        )
    except ValueError as exc:
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 2

    print(json.dumps(res))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
