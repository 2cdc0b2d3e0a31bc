"""
Central constants for the Tree Trace application.
"""
from __future__ import annotations

# Remote tables
TREES_TABLE = "trees"
TREE_IMAGES_TABLE = "tree_images"
PROFILES_TABLE = "profiles"
ROLES_TABLE = "roles"

# Select expressions (embedded resources resolved by the query API)
TREE_WITH_IMAGES = "*,tree_images(*)"
PROFILE_WITH_ROLE = "id,full_name,role:role_id(id,name)"

# Roles
ADMIN_ROLE = "admin"
DEFAULT_ROLE = "user"

# Page sizes
TREES_PAGE_SIZE = 12
ADMIN_PAGE_SIZE = 10

# Form rules
MIN_PASSWORD_LENGTH = 6
ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

MAP_EMBED_URL = "https://maps.google.com/maps?q={lat},{lng}&z=16&output=embed"
