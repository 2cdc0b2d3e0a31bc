from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.treetrace.constants import ADMIN_ROLE, MAP_EMBED_URL


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def split_lines(text: str | None) -> list[str]:
    """Non-blank lines of a newline-separated list field, stripped."""
    if not text:
        return []
    return [line.strip() for line in text.split("\n") if line.strip()]


@dataclass(frozen=True)
class Role:
    id: str
    name: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Role":
        return cls(id=str(row.get("id") or ""), name=row.get("name") or "")


@dataclass(frozen=True)
class Profile:
    id: str
    full_name: str | None
    role: Role | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        raw_role = row.get("role")
        # embedded role comes back as an object or a one-element list
        if isinstance(raw_role, list):
            raw_role = raw_role[0] if raw_role else None
        return cls(
            id=str(row.get("id") or ""),
            full_name=row.get("full_name"),
            role=Role.from_row(raw_role) if isinstance(raw_role, dict) else None,
        )

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role else None

    @property
    def is_admin(self) -> bool:
        return self.role_name == ADMIN_ROLE

    @property
    def short_id(self) -> str:
        return self.id[:8]


@dataclass(frozen=True)
class CareEvent:
    date: str
    event: str


@dataclass(frozen=True)
class TreeImage:
    id: str
    tree_id: str
    image_url: str
    uploaded_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TreeImage":
        return cls(
            id=str(row.get("id") or ""),
            tree_id=str(row.get("tree_id") or ""),
            image_url=row.get("image_url") or "",
            uploaded_at=row.get("uploaded_at"),
        )


@dataclass(frozen=True)
class Tree:
    id: str
    common_name: str
    scientific_name: str
    created_at: str | None = None
    user_id: str | None = None
    facts: str | None = None
    description: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    location: str | None = None
    landmark: str | None = None
    carbon_footprint: float | None = None
    is_premium: bool = False
    age: int | None = None
    biological_conditions: str | None = None
    care_timeline: list[dict[str, Any]] | None = None
    benefits: str | None = None
    images: list[TreeImage] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Tree":
        images = [TreeImage.from_row(r) for r in (row.get("tree_images") or [])]
        images.sort(key=lambda img: img.uploaded_at or "")
        timeline = row.get("care_timeline")
        return cls(
            id=str(row.get("id") or ""),
            common_name=row.get("common_name") or "",
            scientific_name=row.get("scientific_name") or "",
            created_at=row.get("created_at"),
            user_id=row.get("user_id"),
            facts=row.get("facts"),
            description=row.get("description"),
            latitude=_opt_float(row.get("latitude")),
            longitude=_opt_float(row.get("longitude")),
            location=row.get("location"),
            landmark=row.get("landmark"),
            carbon_footprint=_opt_float(row.get("carbon_footprint")),
            is_premium=bool(row.get("is_premium")),
            age=_opt_int(row.get("age")),
            biological_conditions=row.get("biological_conditions"),
            care_timeline=timeline if isinstance(timeline, list) else None,
            benefits=row.get("benefits"),
            images=images,
        )

    @property
    def primary_image(self) -> TreeImage | None:
        return self.images[0] if self.images else None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def map_url(self) -> str | None:
        if not self.has_coordinates:
            return None
        return MAP_EMBED_URL.format(lat=self.latitude, lng=self.longitude)

    @property
    def fact_items(self) -> list[str]:
        return split_lines(self.facts)

    @property
    def benefit_items(self) -> list[str]:
        return split_lines(self.benefits)

    @property
    def care_events(self) -> list[CareEvent]:
        events = []
        for item in self.care_timeline or []:
            if isinstance(item, dict):
                events.append(CareEvent(date=str(item.get("date") or ""), event=str(item.get("event") or "")))
        return events


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: int

    @property
    def display_name(self) -> str:
        return self.email.split("@")[0] if self.email else ""
