#!/usr/bin/env python3
"""
gitrelay Python SDK - Complete Resolution Workflow Example

This example walks one repository through the full pipeline against the
real git hosts:
1. Resolve the route entity to an owner key
2. Reconcile the announcement
3. Expand clone locations into ranked sources
4. Race the sources for the file tree
5. Read a file

Relay access is left to the application: this example serves announcement
events from a JSON file through a minimal RelayPool.

Usage: python resolve_repository.py events.json <npub|hex|name@domain> <repo> [branch]
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Add SDK to path for development
sdk_path = Path(__file__).parent.parent.parent / "sdk" / "python"
sys.path.insert(0, str(sdk_path))

from gitrelay import AsyncRepoResolver, RelayPool, ResolverConfig
from gitrelay.exceptions import GitRelayError, NotFoundError
from gitrelay.logging import configure_logging


class FileRelayPool(RelayPool):
    """Serves stored events as if every relay held all of them."""

    def __init__(self, events: list[dict[str, Any]]) -> None:
        self.events = events

    def subscribe(self, filters, relays, on_event, on_eose):
        loop = asyncio.get_running_loop()

        def deliver() -> None:
            for relay_url in relays:
                for event in self.events:
                    on_event(dict(event), relay_url)
                on_eose(relay_url)

        handle = loop.call_soon(deliver)
        return handle.cancel


async def main(events_path: str, entity: str, repo_name: str, branch: str | None) -> None:
    """Run the complete resolution workflow."""
    print("=== gitrelay Python SDK Example ===\n")

    configure_logging(level=logging.WARNING, fetch_level=logging.INFO)

    events = json.loads(Path(events_path).read_text())
    config = ResolverConfig.from_env()

    async with AsyncRepoResolver(FileRelayPool(events), config) as resolver:
        try:
            # Step 1: Resolve the entity
            print("1. Resolving owner...")
            identity = await resolver.resolve_identity(entity, repo_name)
            if identity.owner_key is None:
                raise NotFoundError("IDENTITY_NOT_FOUND", f"Cannot resolve {entity!r}")
            print(f"   Kind: {identity.kind.value}")
            print(f"   Owner key: {identity.owner_key}")

            # Step 2: Reconcile the announcement
            print("\n2. Reconciling announcement...")
            announcement = await resolver.resolve_announcement(identity.owner_key, repo_name)
            print(f"   Event: {announcement.event_id[:16]}... (created_at={announcement.created_at})")
            print(f"   Description: {announcement.description or '-'}")
            print(f"   Clone locations: {len(announcement.clone_locations)}")
            if announcement.deleted:
                print("   Repository is deleted or archived")
                return

            # Step 3: Expand sources
            print("\n3. Expanding sources...")
            for candidate in resolver.expand_sources(announcement):
                marker = "" if candidate.explicit else " (speculative)"
                print(f"   {candidate.priority:2d}. {candidate.kind.value:8s} {candidate.url}{marker}")

            # Step 4: Race the sources
            print("\n4. Fetching the tree...")
            view = await resolver.resolve_tree(
                entity,
                repo_name,
                branch,
                on_status=lambda s: print(f"   [{s.state.value}] {s.candidate.display_name} {s.error or ''}"),
            )
            print(f"   Branch: {view.branch}")
            print(f"   Source of record: {view.source_of_record}")
            print(f"   Entries: {len(view.files)}")
            for entry in view.files[:10]:
                print(f"   - {entry.path}")

            # Step 5: Read a file
            readme = next((e.path for e in view.files if e.path.lower().startswith("readme")), None)
            if readme is not None:
                print(f"\n5. Reading {readme}...")
                content = await resolver.read_file(view, readme)
                if content.is_binary:
                    print(f"   Binary content ({len(content.binary_data_url)} chars as data URL)")
                else:
                    print("   " + "\n   ".join((content.content or "").splitlines()[:10]))

            print("\n=== Workflow Complete ===")

        except GitRelayError as e:
            print(f"\nError: [{e.code}] {e.message}")
            sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) < 4:
        print(__doc__)
        sys.exit(2)
    asyncio.run(main(sys.argv[1], sys.argv[2], sys.argv[3], sys.argv[4] if len(sys.argv) > 4 else None))
