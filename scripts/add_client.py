#!/usr/bin/env python3
"""Register a client (persona) so the chat endpoint can resolve its slug.

Idempotent: an existing slug is reported and left unchanged.

Usage examples:
    # Default persona, served with config/KNOWLEDGE.md
    uv run python scripts/add_client.py josh-galt "Josh Galt"

    # Persona with its own system prompt
    uv run python scripts/add_client.py jane-doe "Jane Doe" --persona-file jane.md
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from living_library.store.messages import MessageStore


async def _add(slug: str, name: str, persona_file: Path | None) -> None:
    persona = persona_file.read_text(encoding="utf-8") if persona_file else None
    client = await MessageStore.get().create_client(slug, name, persona_prompt=persona)
    print(f"{client.slug}: {client.id} ({client.name})")


def main() -> None:
    parser = argparse.ArgumentParser(description="Register a Living Library client")
    parser.add_argument("slug", help="Stable external key, e.g. josh-galt")
    parser.add_argument("name", help="Display name")
    parser.add_argument(
        "--persona-file",
        type=Path,
        help="Markdown file used as this client's system prompt instead of the default",
    )
    args = parser.parse_args()

    if args.persona_file and not args.persona_file.exists():
        print(f"ERROR: {args.persona_file} does not exist", file=sys.stderr)
        sys.exit(1)

    asyncio.run(_add(args.slug, args.name, args.persona_file))


if __name__ == "__main__":
    main()
