from __future__ import annotations

import asyncio

from zookeeper.utils.rwlock import ReadWriteLock


def test_readers_share_and_writer_waits() -> None:
    async def scenario() -> list[str]:
        lock = ReadWriteLock()
        events: list[str] = []
        release_readers = asyncio.Event()

        async def reader(name: str) -> None:
            async with lock.read():
                events.append(f"{name}.in")
                await release_readers.wait()
                events.append(f"{name}.out")

        async def writer() -> None:
            async with lock.write():
                events.append("writer.in")

        readers = [asyncio.create_task(reader("r1")), asyncio.create_task(reader("r2"))]
        await asyncio.sleep(0)
        assert lock.readers == 2
        write_task = asyncio.create_task(writer())
        await asyncio.sleep(0)
        assert "writer.in" not in events
        release_readers.set()
        await asyncio.gather(*readers, write_task)
        return events

    events = asyncio.run(scenario())

    assert events[:2] == ["r1.in", "r2.in"]
    assert events[-1] == "writer.in"


def test_writer_excludes_readers() -> None:
    async def scenario() -> list[str]:
        lock = ReadWriteLock()
        events: list[str] = []
        release_writer = asyncio.Event()

        async def writer() -> None:
            async with lock.write():
                events.append("writer.in")
                await release_writer.wait()
                events.append("writer.out")

        async def reader() -> None:
            async with lock.read():
                events.append("reader.in")

        write_task = asyncio.create_task(writer())
        await asyncio.sleep(0)
        read_task = asyncio.create_task(reader())
        await asyncio.sleep(0)
        assert lock.writer_active is True
        release_writer.set()
        await asyncio.gather(write_task, read_task)
        return events

    assert asyncio.run(scenario()) == ["writer.in", "writer.out", "reader.in"]
