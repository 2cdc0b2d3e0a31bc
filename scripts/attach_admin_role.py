#!/usr/bin/env python3
"""Attach the admin role to a user's profile (idempotent).

Runs with the service-role key, so it bypasses row-level policies.

Usage:
  SUPABASE_URL=... SUPABASE_SERVICE_ROLE_KEY=... \
    python scripts/attach_admin_role.py --user-id <uuid>
  python scripts/attach_admin_role.py --name "Jane Doe"
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.treetrace.backend import BackendError, service_client_from_env
from app.treetrace.constants import ADMIN_ROLE, PROFILE_WITH_ROLE, PROFILES_TABLE, ROLES_TABLE
from app.treetrace.models import Profile


def main() -> None:
    parser = argparse.ArgumentParser()
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--user-id", help="Profile id (same as the auth user id)")
    group.add_argument("--name", help="Profile full_name (exact match)")
    parser.add_argument("--role", default=ADMIN_ROLE, help="Role name to attach (default: admin)")
    args = parser.parse_args()

    load_dotenv()
    try:
        client = service_client_from_env()
        role = client.select_one(ROLES_TABLE, "id,name", eq={"name": args.role})
        if not role:
            print(f"Role not found: {args.role}")
            sys.exit(1)

        lookup = {"id": args.user_id} if args.user_id else {"full_name": args.name}
        row = client.select_one(PROFILES_TABLE, PROFILE_WITH_ROLE, eq=lookup)
        if not row:
            print(f"Profile not found: {args.user_id or args.name}")
            sys.exit(1)
        profile = Profile.from_row(row)
        if profile.role_name == args.role:
            print(f"Profile {profile.short_id}... already has role {args.role}")
            return

        client.update(PROFILES_TABLE, {"role_id": role["id"]}, eq={"id": profile.id})
    except BackendError as e:
        print(f"Failed: {e}")
        sys.exit(1)
    print(f"Role {args.role} attached to profile {profile.short_id}...")


if __name__ == "__main__":
    main()
