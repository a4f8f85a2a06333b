#!/usr/bin/env python3
"""Emit SQL that registers an ingest module and stores the SHA-256 hash of its API key."""

from __future__ import annotations

import argparse
import hashlib
import secrets
import sys


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, module_id: str, api_key: str, scopes: list[str]) -> str:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    scopes_literal = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"

    return f"""-- Card show curator: ingest module credential
insert into modules (module_id, scopes, enabled)
values ({_quote_sql(module_id)}, {scopes_literal}, true)
on conflict (module_id) do update set scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hash)
select id, {_quote_sql(key_hash)}
from modules
where module_id = {_quote_sql(module_id)};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL for a new ingest module API key.")
    parser.add_argument("--module-id", required=True, help="Value the worker sends as X-Module-Id")
    parser.add_argument("--api-key", help="Use this key instead of generating one")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        help="Scope to grant (repeatable); defaults to ingest:write",
    )
    args = parser.parse_args()

    api_key = args.api_key or secrets.token_urlsafe(32)
    if not args.api_key:
        print(f"generated api key (store it as CC_WORKER_API_KEY): {api_key}", file=sys.stderr)

    print(render_sql(module_id=args.module_id, api_key=api_key, scopes=args.scopes or ["ingest:write"]))


if __name__ == "__main__":
    main()
