"""Terminal front end for the note board.

Drives a FeedController over the HTTP API, so every action goes through
the same validation, notifications and pagination as a browser client.

Usage:
    python scripts/feed_cli.py show [--sort likes] [--pages 2]
    python scripts/feed_cli.py post --name Ada --company Engines --email ada@x.io --body "Hi" [--rephrase]
    python scripts/feed_cli.py like <note_id>
    python scripts/feed_cli.py delete <note_id>
    python scripts/feed_cli.py watch [--seconds 30]

The API location and behaviour come from the environment / .env
(API_URL, PAGE_SIZE, ATOMIC_LIKES, PRESENCE_IDENTITY, ...).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure the project root is on sys.path so `noteboard.*` imports resolve
# when the script is run directly.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from noteboard.client import remote_feed  # noqa: E402
from noteboard.config import settings  # noqa: E402
from noteboard.feed import FeedController  # noqa: E402
from noteboard.models import Note, NoteDraft  # noqa: E402

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)


def render(note: Note) -> str:
    """One feed entry as text; tabs widen to four spaces like the web view."""
    body = note.body.replace("\t", "    ")
    indented = "\n".join(f"      {line}" for line in body.split("\n"))
    return (
        f"  [{note.likes:>3} ♥] {note.name} — {note.company} <{note.email}>\n"
        f"{indented}\n"
        f"      {note.timestamp:%Y-%m-%d}  id={note.id}"
    )


def report(feed: FeedController) -> None:
    if feed.state.notification:
        print(f"\n  {feed.state.notification}")


async def cmd_show(feed: FeedController, args: argparse.Namespace) -> int:
    if not await feed.load_initial():
        report(feed)
        return 1
    for _ in range(args.pages - 1):
        if not await feed.load_more():
            break
    feed.set_sort(args.sort)

    print(f"\n  Messages ({len(feed.state.notes)}), sorted by {args.sort}:\n")
    if not feed.state.notes:
        print("  No messages yet. Be the first to share your thoughts!")
    for note in feed.sorted_notes():
        print(render(note))
        print()
    if feed.state.has_more:
        print(f"  More available: --pages {args.pages + 1}")
    return 0


async def cmd_post(feed: FeedController, args: argparse.Namespace) -> int:
    feed.state.draft = NoteDraft(
        name=args.name,
        company=args.company,
        email=args.email,
        body=args.body,
        signature=args.signature,
    )
    if args.rephrase:
        await feed.rewrite_draft()
        report(feed)
        print(f"  Body: {feed.state.draft.body}")
    note = await feed.submit()
    report(feed)
    if note is None:
        return 1
    print(render(note))
    return 0


async def _load_all(feed: FeedController) -> None:
    await feed.load_initial()
    while feed.state.has_more and await feed.load_more():
        pass


async def cmd_like(feed: FeedController, args: argparse.Namespace) -> int:
    await _load_all(feed)
    ok = await feed.like(args.note_id)
    if not ok and not feed.state.notification:
        print(f"  No message with id {args.note_id} on the board.")
    report(feed)
    return 0 if ok else 1


async def cmd_delete(feed: FeedController, args: argparse.Namespace) -> int:
    ok = await feed.delete(args.note_id)
    report(feed)
    return 0 if ok else 1


async def cmd_watch(feed: FeedController, args: argparse.Namespace, tracker) -> int:
    if not await feed.attach_presence(tracker):
        print("  Presence is unavailable; is the API up?")
        return 1
    print(f"  Watching active users for {args.seconds}s (Ctrl+C to stop)")
    last = None
    for _ in range(int(args.seconds)):
        if feed.state.active_users != last:
            last = feed.state.active_users
            print(f"  Active users: {last}")
        await asyncio.sleep(1)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Note board terminal client")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="List messages")
    show.add_argument("--sort", choices=["latest", "likes"], default="latest")
    show.add_argument("--pages", type=int, default=1)

    post = sub.add_parser("post", help="Share a message")
    post.add_argument("--name", default="")
    post.add_argument("--company", default="")
    post.add_argument("--email", default="")
    post.add_argument("--body", default="")
    post.add_argument("--signature", default="")
    post.add_argument("--rephrase", action="store_true", help="Rewrite the body first")

    like = sub.add_parser("like", help="Like a message")
    like.add_argument("note_id")

    delete = sub.add_parser("delete", help="Delete a message")
    delete.add_argument("note_id")

    watch = sub.add_parser("watch", help="Show the live active-user count")
    watch.add_argument("--seconds", type=float, default=30)

    return parser


async def run(args: argparse.Namespace) -> int:
    feed, tracker = remote_feed(settings)
    try:
        if args.command == "show":
            return await cmd_show(feed, args)
        if args.command == "post":
            return await cmd_post(feed, args)
        if args.command == "like":
            return await cmd_like(feed, args)
        if args.command == "delete":
            return await cmd_delete(feed, args)
        return await cmd_watch(feed, args, tracker)
    finally:
        await feed.close()


def main() -> None:
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
