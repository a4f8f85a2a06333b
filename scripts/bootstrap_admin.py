#!/usr/bin/env python3
"""Emit SQL that grants or revokes the moderation admin role for a Supabase user."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None) -> str:
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"

    return f"""-- Card show curator: reviewer role bootstrap
-- Run in the Supabase SQL editor (or another privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};

select id, email, raw_app_meta_data->>'role' as role
from auth.users
where {target_where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to set a reviewer's role in Supabase app metadata.")
    parser.add_argument(
        "--role",
        choices=["user", "admin"],
        default="admin",
        help="Role stored in auth.users.raw_app_meta_data.role; only admin may moderate",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email))


if __name__ == "__main__":
    main()
