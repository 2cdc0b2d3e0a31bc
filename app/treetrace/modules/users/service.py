from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.treetrace.audit import record_event
from app.treetrace.backend import FunctionResponse
from app.treetrace.constants import MIN_PASSWORD_LENGTH, PROFILE_WITH_ROLE, PROFILES_TABLE, ROLES_TABLE
from app.treetrace.models import Profile, Role
from app.treetrace.pagination import Page

if TYPE_CHECKING:
    from app.treetrace.backend import SupabaseClient
    from app.treetrace.models import CurrentUser


_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class UserAdminError(RuntimeError):
    pass


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def validate_new_user(email: str, password: str, role_name: str) -> list[str]:
    errors = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email address")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not role_name:
        errors.append("Role is required")
    return errors


def list_roles(client: "SupabaseClient") -> list[Role]:
    result = client.select(ROLES_TABLE, "*", order="name")
    return [Role.from_row(r) for r in result.rows]


def list_profiles(client: "SupabaseClient", page: Page, search: str = "") -> tuple[list[Profile], Page]:
    """Profiles ordered by name; `search` is a substring match on full_name."""

    def fetch(p: Page):
        return client.select(
            PROFILES_TABLE,
            PROFILE_WITH_ROLE,
            search=(("full_name",), search) if search else None,
            order="full_name",
            ascending=True,
            offset=p.offset,
            limit=p.page_size,
            count=True,
        )

    result = fetch(page)
    sized = page.with_total(result.count)
    if sized.page != page.page:
        result = fetch(sized)
    return [Profile.from_row(r) for r in result.rows], sized


def change_role(
    client: "SupabaseClient",
    profile_id: str,
    role_name: str,
    roles: list[Role],
    actor: "CurrentUser",
) -> Role:
    role = next((r for r in roles if r.name == role_name), None)
    if role is None:
        raise UserAdminError("Invalid role selected.")
    client.update(PROFILES_TABLE, {"role_id": role.id}, eq={"id": profile_id})
    record_event(
        actor=actor,
        action="user.role_change",
        entity_type="Profile",
        entity_id=profile_id,
        metadata={"role": role.name},
    )
    return role


def _function_error(resp: FunctionResponse, default: str) -> str:
    data = resp.data if isinstance(resp.data, dict) else {}
    return data.get("error") or default


def create_user(
    client: "SupabaseClient",
    function_name: str,
    email: str,
    password: str,
    role_name: str,
    actor: "CurrentUser",
) -> FunctionResponse:
    resp = client.invoke_function(
        function_name,
        {"email": email, "password": password, "roleName": role_name},
        authorization=f"Bearer {actor.access_token}",
    )
    if not resp.ok:
        raise UserAdminError(_function_error(resp, "Failed to create user via admin."))
    record_event(
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=email,
        metadata={"email": email, "role": role_name},
    )
    return resp


def delete_user(
    client: "SupabaseClient",
    function_name: str,
    user_id: str,
    actor: "CurrentUser",
) -> FunctionResponse:
    resp = client.invoke_function(
        function_name,
        {"userId": user_id},
        authorization=f"Bearer {actor.access_token}",
    )
    if not resp.ok:
        raise UserAdminError(_function_error(resp, "Failed to delete user."))
    record_event(actor=actor, action="user.delete", entity_type="User", entity_id=user_id)
    return resp

