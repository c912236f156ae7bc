#!/usr/bin/env python3
"""
Basic gitrelay usage example.

Runs offline: relays and git hosts are replaced by the mocks in
gitrelay.testing.
Run with: python examples/basic_usage.py
"""

import asyncio

from gitrelay import ConfigurationError, GitRelayError, npub_decode, npub_encode
from gitrelay.serialize import compute_event_id, serialize_event

print("=== gitrelay Basic Usage Example ===\n")

# 1. Test exception hierarchy
print("1. Testing exception classes...")
try:
    raise ConfigurationError("Invalid GITRELAY_SOURCE_TIMEOUT: fast")
except GitRelayError as e:
    print(f"   Caught GitRelayError: {e}")
    print(f"   Code: {e.code}, Message: {e.message}")

print("\n   OK: Exception classes working\n")

# 2. Test npub encoding
print("2. Testing npub encoding...")
hex_key = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"
npub = npub_encode(hex_key)
print(f"   Hex: {hex_key}")
print(f"   npub: {npub}")
assert npub_decode(npub) == hex_key, "Round-trip should give the same key"
print("   Round-trip: OK")

print("\n   OK: npub encoding working\n")

# 3. Test event ids
print("3. Testing event ids...")
tags = [["d", "demo"], ["clone", "https://github.com/alice/demo"]]
content = 'say "hi"\nbye'
print(f"   Serialized: {serialize_event(hex_key, 1700000000, 30617, tags, content)}")
print(f"   Event id: {compute_event_id(hex_key, 1700000000, 30617, tags, content)}")

print("\n   OK: Event ids working\n")

# 4. Test source expansion
print("4. Testing source expansion...")
from gitrelay import SourceExpander

candidates = SourceExpander().expand(
    [
        f"https://relay.ngit.dev/{npub}/demo.git",
        "git@github.com:alice/demo.git",
        "http://localhost:8080/demo.git",
    ]
)
for candidate in candidates:
    marker = "" if candidate.explicit else " (speculative)"
    print(f"   {candidate.priority:2d}. {candidate.kind.value:8s} {candidate.url}{marker}")

print("\n   OK: Source expansion working\n")

# 5. Test a full resolution against mocks
print("5. Testing a full resolution...")
from gitrelay import AsyncRepoResolver, ResolverConfig
from gitrelay.testing import MockBackend, MockRelayPool, make_announcement_event
from gitrelay.types.files import FileEntry


async def resolve() -> None:
    pool = MockRelayPool()
    pool.add_event(
        "wss://relay.ngit.dev",
        make_announcement_event(hex_key, "demo", clone=["https://github.com/alice/demo"]),
    )
    backend = MockBackend()
    backend.configure_tree(
        "https://github.com/alice/demo",
        files=[FileEntry(path="README.md"), FileEntry(path="src/main.py")],
        delay=0.1,
    )
    backend.configure_file("https://github.com/alice/demo", "README.md", b"# Demo\n")

    config = ResolverConfig(relays=["wss://relay.ngit.dev"], event_grace=0.2, eose_grace=0.1)
    async with AsyncRepoResolver(pool, config, backend=backend) as resolver:
        view = await resolver.resolve_tree(npub, "demo")
        print(f"   Branch: {view.branch}")
        print(f"   Source of record: {view.source_of_record}")
        for entry in view.files:
            print(f"   - {entry.path} ({entry.type.value})")

        readme = await resolver.read_file(view, "README.md")
        print(f"   README.md from {readme.source}: {readme.content!r}")


asyncio.run(resolve())

print("\n   OK: Resolution working\n")
