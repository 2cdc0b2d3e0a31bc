#!/usr/bin/env python3
"""Populate the tree catalog with sample trees and placeholder images.

Every third tree is premium. Trees are attributed to --user-id (an existing
auth user) and written with the service-role key.

Usage:
  SUPABASE_URL=... SUPABASE_SERVICE_ROLE_KEY=... \
    python scripts/seed_data.py --user-id <uuid> [--count 15] [--seed 42]
"""

from __future__ import annotations

import argparse
import os
import random
import sys
import urllib.parse
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.treetrace.backend import BackendError, service_client_from_env
from app.treetrace.constants import TREE_IMAGES_TABLE, TREES_TABLE

BASE_TREES = [
    ("Oak", "Quercus robur"),
    ("Pine", "Pinus sylvestris"),
    ("Maple", "Acer platanoides"),
    ("Birch", "Betula pendula"),
    ("Willow", "Salix babylonica"),
    ("Ash", "Fraxinus excelsior"),
    ("Elm", "Ulmus americana"),
    ("Spruce", "Picea abies"),
    ("Fir", "Abies alba"),
    ("Cypress", "Cupressus sempervirens"),
    ("Banyan", "Ficus benghalensis"),
    ("Neem", "Azadirachta indica"),
    ("Mango", "Mangifera indica"),
    ("Teak", "Tectona grandis"),
    ("Eucalyptus", "Eucalyptus globulus"),
]

LOCATIONS = [
    "Central Park, Mumbai",
    "Bandra Kurla Complex, Mumbai",
    "Powai Lake Area, Mumbai",
    "Worli Seaface, Mumbai",
    "Juhu Beach vicinity, Mumbai",
    "Andheri Sports Complex, Mumbai",
    "Malad Industrial Area, Mumbai",
    "Thane Creek, Mumbai",
    "Versova Beach Park, Mumbai",
    "Aarey Colony, Mumbai",
    "Sanjay Gandhi National Park, Mumbai",
    "Marine Drive, Mumbai",
    "Shivaji Park, Mumbai",
    "Matunga Station Road, Mumbai",
    "Ghatkopar Hills, Mumbai",
]

LANDMARKS = [
    "Near the main fountain",
    "Behind the administrative building",
    "Next to the parking area",
    "Close to the children's playground",
    "Adjacent to the security gate",
    "By the main entrance",
    "Near the cafeteria",
    "Next to the jogging track",
    "Close to the bus stop",
    "Behind the visitor center",
    "Near the meditation garden",
    "By the artificial lake",
    "Next to the sports field",
    "Close to the memorial statue",
    "Near the botanical garden",
]

BENEFITS = [
    "Air purification\nCarbon sequestration\nSoil conservation",
    "Noise reduction\nTemperature regulation\nBiodiversity support",
    "Erosion control\nWildlife habitat\nOxygen production",
    "Urban cooling\nStormwater management\nAesthetic enhancement",
    "Mental health benefits\nProperty value increase\nWindbreak protection",
]

BIOLOGICAL_CONDITIONS = [
    "Healthy root system with good drainage. Regular watering schedule maintained. No signs of disease or pest infestation.",
    "Established mature tree with strong trunk. Seasonal pruning completed. Excellent soil conditions with proper pH balance.",
    "Young sapling with developing root structure. Protected from strong winds. Regular fertilization program in place.",
    "Mature specimen showing excellent growth patterns. Well-adapted to local climate conditions. Minimal maintenance required.",
    "Recently transplanted with careful root ball preservation. Monitoring for transplant shock. Supplemental watering ongoing.",
]

CARE_EVENTS = [
    {"date": "2024-01-15", "event": "Initial planting and soil preparation"},
    {"date": "2024-02-20", "event": "First fertilization and mulching"},
    {"date": "2024-04-10", "event": "Pruning of lower branches for clearance"},
    {"date": "2024-06-05", "event": "Pest inspection and treatment application"},
    {"date": "2024-08-12", "event": "Deep watering system installation"},
    {"date": "2024-10-18", "event": "Health assessment and growth measurement"},
    {"date": "2024-12-22", "event": "Winter protection and stake adjustment"},
]

CENTER_LAT = 19.076
CENTER_LNG = 72.8777


def placeholder_images(label: str, rng: random.Random) -> list[str]:
    urls = []
    for i in range(rng.randint(2, 5)):
        bg = f"{rng.randrange(0xFFFFFF):06x}"
        text = urllib.parse.quote(f"{label}-{i + 1}")
        urls.append(f"https://placehold.co/{800 + i * 50}x{600 + i * 50}/{bg}/ffffff?text={text}")
    return urls


def generate_tree(index: int, rng: random.Random) -> tuple[dict[str, Any], list[str]]:
    """Tree record (without user_id) and its image URLs for sample `index`."""
    common, scientific = BASE_TREES[index % len(BASE_TREES)]
    common_name = f"{common} Tree #{index + 1}"
    location = LOCATIONS[index % len(LOCATIONS)]
    is_premium = (index + 1) % 3 == 0

    tree: dict[str, Any] = {
        "common_name": common_name,
        "scientific_name": scientific,
        "facts": "\n".join(
            [
                f"{common_name} is known for its exceptional environmental benefits.",
                f"This species typically grows {20 + rng.randrange(30)} meters tall.",
                "Native to various regions and widely cultivated for sustainability projects.",
                "Excellent for urban environments due to pollution tolerance.",
            ]
        ),
        "description": (
            f"This {common_name} is part of the campus plantation program in {location}. "
            "It has been selected and maintained to support the local ecosystem and carbon offset goals."
        ),
        "latitude": CENTER_LAT + (rng.random() - 0.5) * 0.2,
        "longitude": CENTER_LNG + (rng.random() - 0.5) * 0.2,
        "location": location,
        "landmark": LANDMARKS[index % len(LANDMARKS)],
        "carbon_footprint": round(15 + rng.random() * 35, 2),
        "is_premium": is_premium,
    }
    if is_premium:
        tree["age"] = rng.randint(5, 54)
        tree["biological_conditions"] = BIOLOGICAL_CONDITIONS[index % len(BIOLOGICAL_CONDITIONS)]
        tree["care_timeline"] = CARE_EVENTS[: rng.randint(3, 5)]
        tree["benefits"] = BENEFITS[index % len(BENEFITS)]

    return tree, placeholder_images(f"{common}+{index + 1}", rng)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--user-id", default=os.environ.get("DUMMY_USER_ID"), help="Auth user id to own the trees")
    parser.add_argument("--count", type=int, default=15, help="Number of trees to create (default: 15)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable data")
    args = parser.parse_args()

    load_dotenv()
    if not args.user_id:
        print("ERROR: pass --user-id (or set DUMMY_USER_ID) to an existing auth user id.")
        sys.exit(1)

    try:
        client = service_client_from_env()
    except BackendError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    rng = random.Random(args.seed)
    created = premium = images = 0
    print(f"Seeding {args.count} trees...")
    for index in range(args.count):
        tree, image_urls = generate_tree(index, rng)
        try:
            rows = client.insert(TREES_TABLE, {**tree, "user_id": args.user_id})
            if not rows:
                raise BackendError("insert returned no row")
            tree_id = rows[0]["id"]
            if image_urls:
                client.insert(TREE_IMAGES_TABLE, [{"tree_id": tree_id, "image_url": u} for u in image_urls])
        except BackendError as e:
            print(f"  FAILED {tree['common_name']}: {e}")
            continue
        created += 1
        images += len(image_urls)
        if tree["is_premium"]:
            premium += 1
        suffix = " (premium)" if tree["is_premium"] else ""
        print(f"  {tree['common_name']} id={tree_id} images={len(image_urls)}{suffix}")

    print(f"Done. trees={created}/{args.count} premium={premium} images={images}")


if __name__ == "__main__":
    main()
