from __future__ import annotations

import json
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from werkzeug.utils import secure_filename

from app.treetrace.audit import record_event
from app.treetrace.backend import BackendError
from app.treetrace.constants import (
    ALLOWED_IMAGE_TYPES,
    TREE_IMAGES_TABLE,
    TREE_WITH_IMAGES,
    TREES_TABLE,
)
from app.treetrace.models import Tree
from app.treetrace.pagination import Page
from app.treetrace.storage import remove_public_objects

if TYPE_CHECKING:
    from app.treetrace.backend import SupabaseClient
    from app.treetrace.models import CurrentUser
    from app.treetrace.storage import Storage


TEXT_FIELDS = ("common_name", "scientific_name", "facts", "description", "location", "landmark")
PREMIUM_TEXT_FIELDS = ("biological_conditions", "benefits")
FORM_FIELDS = TEXT_FIELDS + PREMIUM_TEXT_FIELDS + (
    "latitude",
    "longitude",
    "carbon_footprint",
    "age",
    "care_timeline",
)


@dataclass(frozen=True)
class UploadedImage:
    filename: str
    content_type: str
    data: bytes


def _clean(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _parse_number(raw: str, label: str, errors: list[str]) -> float | None:
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        value = None
    if value is None or not math.isfinite(value):
        errors.append(f"{label} must be a number.")
        return None
    return value


def parse_care_timeline(raw: str | None) -> tuple[list[dict[str, Any]] | None, str | None]:
    """Parse the care timeline JSON from form input."""
    if not raw or not raw.strip():
        return None, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON format for Care Timeline: {e}"
    if not isinstance(value, list):
        return None, "Care timeline must be a valid JSON array."
    for i, item in enumerate(value, start=1):
        if not isinstance(item, dict):
            return None, f"Care timeline entry {i} must be an object with date and event."
        if not isinstance(item.get("date"), str) or not isinstance(item.get("event"), str):
            return None, f"Care timeline entry {i} needs string \"date\" and \"event\" values."
    return value, None


def validate_tree_form(form: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """
    Validate tree create/update form input.

    Returns the record values to store and a list of errors. Premium fields
    are nulled when the tree is not premium; empty optional text is stored
    as null.
    """
    errors: list[str] = []

    common_name = _clean(form.get("common_name"))
    if not common_name:
        errors.append("Common name is required")
    scientific_name = _clean(form.get("scientific_name"))
    if not scientific_name:
        errors.append("Scientific name is required")

    latitude = _parse_number(_clean(form.get("latitude")), "Latitude", errors)
    if latitude is not None and not -90 <= latitude <= 90:
        errors.append("Latitude must be between -90 and 90.")
    longitude = _parse_number(_clean(form.get("longitude")), "Longitude", errors)
    if longitude is not None and not -180 <= longitude <= 180:
        errors.append("Longitude must be between -180 and 180.")
    carbon_footprint = _parse_number(_clean(form.get("carbon_footprint")), "Carbon footprint", errors)
    if carbon_footprint is not None and carbon_footprint <= 0:
        errors.append("Carbon footprint must be positive")

    is_premium = _clean(form.get("is_premium")).lower() in ("1", "on", "true", "yes")

    payload: dict[str, Any] = {
        "common_name": common_name,
        "scientific_name": scientific_name,
        "facts": _clean(form.get("facts")) or None,
        "description": _clean(form.get("description")) or None,
        "latitude": latitude,
        "longitude": longitude,
        "location": _clean(form.get("location")) or None,
        "landmark": _clean(form.get("landmark")) or None,
        "carbon_footprint": carbon_footprint,
        "is_premium": is_premium,
        "age": None,
        "biological_conditions": None,
        "care_timeline": None,
        "benefits": None,
    }

    if is_premium:
        raw_age = _clean(form.get("age"))
        if raw_age:
            try:
                age = int(raw_age)
            except ValueError:
                age = 0
            if age <= 0:
                errors.append("Age must be a positive integer")
            else:
                payload["age"] = age
        timeline, timeline_error = parse_care_timeline(form.get("care_timeline"))
        if timeline_error:
            errors.append(timeline_error)
        payload["care_timeline"] = timeline
        payload["biological_conditions"] = _clean(form.get("biological_conditions")) or None
        payload["benefits"] = _clean(form.get("benefits")) or None

    return payload, errors


def form_values(tree: Tree | None = None, form: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Values to render in the tree form: submitted input, else the tree, else blanks."""
    if form is not None:
        values = {k: form.get(k) or "" for k in FORM_FIELDS}
        values["is_premium"] = _clean(form.get("is_premium")).lower() in ("1", "on", "true", "yes")
        return values
    if tree is None:
        values = {k: "" for k in FORM_FIELDS}
        values["is_premium"] = False
        return values
    values = {k: getattr(tree, k) or "" for k in TEXT_FIELDS + PREMIUM_TEXT_FIELDS}
    for k in ("latitude", "longitude", "carbon_footprint", "age"):
        v = getattr(tree, k)
        values[k] = "" if v is None else v
    values["care_timeline"] = json.dumps(tree.care_timeline, indent=2) if tree.care_timeline else ""
    values["is_premium"] = tree.is_premium
    return values


def list_trees(client: "SupabaseClient", page: Page, search: str = "") -> tuple[list[Tree], Page]:
    """
    Newest-first page of trees, optionally filtered by name substring.

    A page past the end is re-read as the last page.
    """

    def fetch(p: Page):
        return client.select(
            TREES_TABLE,
            TREE_WITH_IMAGES,
            search=(("common_name", "scientific_name"), search) if search else None,
            order="created_at",
            ascending=False,
            offset=p.offset,
            limit=p.page_size,
            count=True,
        )

    result = fetch(page)
    sized = page.with_total(result.count)
    if sized.page != page.page:
        result = fetch(sized)
    return [Tree.from_row(r) for r in result.rows], sized


def get_tree(client: "SupabaseClient", tree_id: str) -> Tree | None:
    row = client.select_one(TREES_TABLE, TREE_WITH_IMAGES, eq={"id": tree_id})
    return Tree.from_row(row) if row else None


def create_tree(client: "SupabaseClient", payload: dict[str, Any], user: "CurrentUser") -> Tree:
    rows = client.insert(TREES_TABLE, {**payload, "user_id": user.id})
    if not rows:
        raise BackendError("Tree insert returned no row.")
    tree = Tree.from_row(rows[0])
    record_event(
        actor=user,
        action="tree.create",
        entity_type="Tree",
        entity_id=tree.id,
        metadata={"common_name": tree.common_name, "is_premium": tree.is_premium},
    )
    return tree


def update_tree(client: "SupabaseClient", tree: Tree, payload: dict[str, Any], user: "CurrentUser") -> None:
    changes = {}
    for key, new in payload.items():
        old = getattr(tree, key, None)
        if old != new:
            changes[key] = {"old": old, "new": new}
    client.update(TREES_TABLE, payload, eq={"id": tree.id})
    record_event(
        actor=user,
        action="tree.update",
        entity_type="Tree",
        entity_id=tree.id,
        metadata={"common_name": payload.get("common_name"), "changes": changes},
    )


def build_image_key(user_id: str, tree_id: str, filename: str, now_ms: int | None = None) -> str:
    """Storage key `<user>/<tree>/<epoch ms>-<filename>`."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    safe_filename = secure_filename(filename) or "image"
    return f"{user_id}/{tree_id}/{now_ms}-{safe_filename}"


def validate_images(files: list[UploadedImage]) -> list[str]:
    errors = []
    for f in files:
        if f.content_type not in ALLOWED_IMAGE_TYPES:
            errors.append(f"{f.filename}: only JPEG, PNG, GIF or WebP images can be uploaded.")
    return errors


def upload_tree_images(
    client: "SupabaseClient",
    storage: "Storage",
    tree_id: str,
    files: list[UploadedImage],
    user: "CurrentUser",
) -> list[str]:
    """Store each file and record its public URL against the tree."""
    if not user or not user.id:
        raise BackendError("Authentication error during image upload.")
    urls = []
    for f in files:
        key = build_image_key(user.id, tree_id, f.filename)
        storage.put_bytes(key, f.data, content_type=f.content_type)
        urls.append(storage.public_url(key))
    if urls:
        client.insert(TREE_IMAGES_TABLE, [{"tree_id": tree_id, "image_url": url} for url in urls])
        record_event(
            actor=user,
            action="tree.images_upload",
            entity_type="Tree",
            entity_id=tree_id,
            metadata={"count": len(urls)},
        )
    return urls


def replace_tree_images(
    client: "SupabaseClient",
    storage: "Storage",
    tree: Tree,
    files: list[UploadedImage],
    user: "CurrentUser",
) -> list[str]:
    """Drop the tree's current images (objects and rows), then upload `files`."""
    remove_public_objects(storage, [img.image_url for img in tree.images])
    client.delete(TREE_IMAGES_TABLE, eq={"tree_id": tree.id})
    return upload_tree_images(client, storage, tree.id, files, user)


def delete_tree(client: "SupabaseClient", storage: "Storage", tree: Tree, user: "CurrentUser") -> None:
    removed = remove_public_objects(storage, [img.image_url for img in tree.images])
    client.delete(TREES_TABLE, eq={"id": tree.id})
    record_event(
        actor=user,
        action="tree.delete",
        entity_type="Tree",
        entity_id=tree.id,
        metadata={"common_name": tree.common_name, "images_removed": len(removed)},
    )


def gallery_index(raw: Any, total: int) -> int:
    """Image viewer position; wraps around in both directions."""
    if total <= 0:
        return 0
    try:
        idx = int(raw)
    except (TypeError, ValueError):
        return 0
    return idx % total
