"""Tests covering identifier registration on the relay."""

import asyncio
import random

from fakes import FakeConnection
from peerlink.registry import ClientRegistry


def test_register_and_lookup() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        alice = FakeConnection("a")

        displaced = await registry.register("alice", alice)

        assert displaced is None
        assert await registry.lookup("alice") is alice
        assert await registry.lookup("bob") is None
        assert await registry.identifier_for(alice) == "alice"
        assert "alice" in registry
        assert len(registry) == 1

    asyncio.run(scenario())


def test_last_registration_wins() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        first, second = FakeConnection("1"), FakeConnection("2")

        await registry.register("alice", first)
        displaced = await registry.register("alice", second)

        assert displaced is first
        assert await registry.lookup("alice") is second
        assert await registry.identifier_for(first) is None
        assert len(registry) == 1

    asyncio.run(scenario())


def test_reregistering_same_binding_is_a_noop() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        alice = FakeConnection("a")

        await registry.register("alice", alice)
        displaced = await registry.register("alice", alice)

        assert displaced is None
        assert await registry.identifiers() == ["alice"]

    asyncio.run(scenario())


def test_connection_renaming_releases_old_identifier() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        conn = FakeConnection("a")

        await registry.register("alice", conn)
        await registry.register("alicia", conn)

        assert await registry.lookup("alice") is None
        assert await registry.lookup("alicia") is conn
        assert await registry.identifiers() == ["alicia"]

    asyncio.run(scenario())


def test_remove_drops_only_own_bindings() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        first, second = FakeConnection("1"), FakeConnection("2")
        await registry.register("alice", first)
        await registry.register("alice", second)

        # The displaced connection no longer owns the identifier.
        assert await registry.remove(first) == []
        assert await registry.lookup("alice") is second

        assert await registry.remove(second) == ["alice"]
        assert await registry.lookup("alice") is None
        assert len(registry) == 0
        assert await registry.remove(second) == []

    asyncio.run(scenario())


def test_random_sequences_keep_latest_binding() -> None:
    async def scenario() -> None:
        rng = random.Random(7)
        registry = ClientRegistry()
        connections = [FakeConnection(str(n)) for n in range(5)]
        names = ["alice", "bob", "carol"]
        expected = {}
        owned = {}

        for _ in range(300):
            conn = rng.choice(connections)
            if rng.random() < 0.2:
                await registry.remove(conn)
                name = owned.pop(conn, None)
                if name is not None and expected.get(name) is conn:
                    del expected[name]
                continue
            name = rng.choice(names)
            await registry.register(name, conn)
            old = owned.get(conn)
            if old is not None and old != name and expected.get(old) is conn:
                del expected[old]
            holder = expected.get(name)
            if holder is not None and holder is not conn:
                owned.pop(holder, None)
            expected[name] = conn
            owned[conn] = name

            for key in names:
                assert await registry.lookup(key) is expected.get(key)

        assert await registry.identifiers() == sorted(expected)

    asyncio.run(scenario())


def test_concurrent_registrations_settle_on_one_binding() -> None:
    async def scenario() -> None:
        registry = ClientRegistry()
        connections = [FakeConnection(str(n)) for n in range(20)]

        await asyncio.gather(*(registry.register("shared", conn) for conn in connections))

        winner = await registry.lookup("shared")
        assert winner is connections[-1]
        assert len(registry) == 1

    asyncio.run(scenario())
