"""Seed the board with realistic notes.

Posts a set of sample notes, likes a few of them, then pages through the
feed to show the cursor pagination. Requires the API to be running
(``python -m noteboard.main``).

Usage:
    python scripts/seed_notes.py [--base-url http://localhost:8000] [--repeat 1]
"""

from __future__ import annotations

import argparse
import sys
import time

import requests

DEFAULT_BASE_URL = "http://localhost:8000"
TIMEOUT = 10

# Each entry: (name, company, email, body, likes)
NOTES: list[tuple[str, str, str, str, int]] = [
    (
        "Ada Lovelace",
        "Analytical Engines Ltd",
        "ada@engines.example",
        "Loved the talk on bounded collections.\nWhen is the next meetup?",
        4,
    ),
    (
        "Grace Hopper",
        "COBOL Collective",
        "grace@cobol.example",
        "Found a moth in the relay again. Sharing for posterity.",
        7,
    ),
    (
        "Linus Torvalds",
        "Kernel Folks",
        "linus@kernel.example",
        "Patches welcome, flames less so.",
        1,
    ),
    (
        "Margaret Hamilton",
        "Apollo Software",
        "margaret@apollo.example",
        "Priority scheduling saved the landing. Plan for overload!",
        9,
    ),
    (
        "Alan Turing",
        "Bletchley Park",
        "alan@bletchley.example",
        "Can machines think? Leave your answer below.",
        0,
    ),
    (
        "Barbara Liskov",
        "MIT CSAIL",
        "barbara@csail.example",
        "Subtypes should be substitutable for their base types.\tAlways.",
        3,
    ),
]


def check_health(base_url: str) -> bool:
    """Verify the API is reachable and the store is up."""
    try:
        resp = requests.get(f"{base_url}/health", timeout=TIMEOUT)
        data = resp.json()
        return data.get("store") == "healthy"
    except requests.RequestException as e:
        print(f"  Health check failed: {e}")
        return False


def post_note(base_url: str, name: str, company: str, email: str, body: str) -> dict:
    """Submit one note and return it."""
    resp = requests.post(
        f"{base_url}/notes",
        json={"name": name, "company": company, "email": email, "body": body},
        timeout=TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()


def like_note(base_url: str, note_id: str, times: int) -> int:
    """Add *times* likes using the atomic endpoint; returns the final count."""
    likes = 0
    for _ in range(times):
        resp = requests.post(f"{base_url}/notes/{note_id}/like", timeout=TIMEOUT)
        resp.raise_for_status()
        likes = resp.json()["likes"]
    return likes


def walk_feed(base_url: str, page_size: int) -> int:
    """Page through the whole feed; returns the number of notes seen."""
    seen = 0
    cursor = None
    page_no = 0
    while True:
        params = {"page_size": page_size}
        if cursor:
            params["cursor"] = cursor
        resp = requests.get(f"{base_url}/notes", params=params, timeout=TIMEOUT)
        resp.raise_for_status()
        page = resp.json()
        page_no += 1
        seen += len(page["notes"])
        print(f"    page {page_no}: {len(page['notes'])} notes, has_more={page['has_more']}")
        if not page["has_more"] or not page["notes"]:
            return seen
        cursor = page["notes"][-1]["timestamp"]


def main() -> None:
    """Post all sample notes, like them, then walk the feed."""
    parser = argparse.ArgumentParser(description="Seed the note board")
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help=f"Noteboard API base URL (default: {DEFAULT_BASE_URL})",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Post the sample set this many times (use >17 to exercise eviction)",
    )
    parser.add_argument("--page-size", type=int, default=12)
    args = parser.parse_args()
    base_url = args.base_url.rstrip("/")

    print(f"\n  Seeding notes via {base_url}")
    print("  " + "=" * 58)

    if not check_health(base_url):
        print("  FAIL: Store is not healthy. Is PostgreSQL up?")
        sys.exit(1)
    print("  OK: API is healthy.\n")

    start = time.time()
    posted = 0
    for round_no in range(args.repeat):
        for name, company, email, body, likes in NOTES:
            try:
                note = post_note(base_url, name, company, email, body)
                final = like_note(base_url, note["id"], likes)
                posted += 1
                print(f"  [{round_no + 1}] {name:<20} id={note['id'][:8]} likes={final}")
            except requests.RequestException as e:
                print(f"  [{round_no + 1}] {name:<20} ERROR: {e}")

    print(f"\n  Walking the feed (page size {args.page_size}):")
    total = walk_feed(base_url, args.page_size)

    print("\n  " + "=" * 58)
    print(f"  Done! Posted {posted} notes in {time.time() - start:.1f}s.")
    print(f"  Notes on the board: {total}")
    print("    - API Docs: http://localhost:8000/docs")
    print()


if __name__ == "__main__":
    main()
