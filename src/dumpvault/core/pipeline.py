"""Streaming pipeline: source -> stages -> sink with a single error channel.

Data is pulled one chunk at a time and the next chunk is not read until the
sink has accepted the previous one, so a slow sink throttles the producer.
Every stage error surfaces from ``Pipeline.run``; nothing is reported through
side channels.
"""

import asyncio
import contextlib
import logging
import zlib
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import aiofiles

from .errors import IntegrityError, ProcessError

CHUNK_SIZE = 64 * 1024
GZIP_WBITS = 16 + zlib.MAX_WBITS

logger = logging.getLogger("Pipeline")


class Stage(Protocol):
    def feed(self, chunk: bytes) -> bytes: ...

    def flush(self) -> bytes: ...


class Sink(Protocol):
    async def write(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...


class GzipCompressor:
    """gzip-framed deflate stage"""

    def __init__(self, level: int = 9):
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)

    def feed(self, chunk: bytes) -> bytes:
        return self._compressor.compress(chunk)

    def flush(self) -> bytes:
        return self._compressor.flush()


class GzipDecompressor:
    """Inverse of GzipCompressor; a stream that ends early is an integrity failure"""

    def __init__(self):
        self._decompressor = zlib.decompressobj(GZIP_WBITS)

    def feed(self, chunk: bytes) -> bytes:
        try:
            return self._decompressor.decompress(chunk)
        except zlib.error as e:
            raise IntegrityError(f"Backup stream is corrupted: {e}") from e

    def flush(self) -> bytes:
        tail = self._decompressor.flush()
        if not self._decompressor.eof:
            raise IntegrityError("Backup stream ended before the end of the compressed data")
        return tail


class FileSink:
    def __init__(self, path: Path):
        self.path = path
        self._handle = None

    async def write(self, chunk: bytes) -> None:
        if self._handle is None:
            self._handle = await aiofiles.open(self.path, "wb")
        await self._handle.write(chunk)

    async def close(self) -> None:
        if self._handle is None:
            # Nothing was written; still leave an (empty) artifact behind
            self._handle = await aiofiles.open(self.path, "wb")
        await self._handle.close()


class ProcessSink:
    """Writes into a subprocess stdin, waiting for the pipe to drain"""

    def __init__(self, writer: asyncio.StreamWriter):
        self._writer = writer

    async def write(self, chunk: bytes) -> None:
        self._writer.write(chunk)
        await self._writer.drain()

    async def close(self) -> None:
        # The process may already be gone; its exit status tells the story
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            if self._writer.can_write_eof():
                self._writer.write_eof()
            self._writer.close()
            await self._writer.wait_closed()


async def file_source(path: Path, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as handle:
        while chunk := await handle.read(chunk_size):
            yield chunk


async def stream_source(reader: asyncio.StreamReader, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    while chunk := await reader.read(chunk_size):
        yield chunk


class Pipeline:
    """Connects a source to a sink through zero or more transform stages"""

    def __init__(self, source: AsyncIterator[bytes], stages: Sequence[Stage], sink: Sink):
        self.source = source
        self.stages = list(stages)
        self.sink = sink
        self.bytes_in = 0
        self.bytes_out = 0

    def _transform(self, chunk: bytes, start: int = 0) -> bytes:
        for stage in self.stages[start:]:
            if not chunk:
                break
            chunk = stage.feed(chunk)
        return chunk

    async def _emit(self, chunk: bytes) -> None:
        if chunk:
            self.bytes_out += len(chunk)
            await self.sink.write(chunk)

    async def run(self) -> int:
        """Pump the source to exhaustion; returns the number of bytes written to the sink"""
        try:
            async for chunk in self.source:
                self.bytes_in += len(chunk)
                await self._emit(self._transform(chunk))

            # Flush each stage and push its tail through the remaining stages
            for index, stage in enumerate(self.stages):
                await self._emit(self._transform(stage.flush(), index + 1))
        finally:
            with contextlib.suppress(Exception):
                await self.source.aclose()  # type: ignore[attr-defined]
            await self.sink.close()
        return self.bytes_out


@dataclass
class ProcessOutcome:
    returncode: int
    stderr: str


async def _collect(reader: asyncio.StreamReader | None) -> str:
    if reader is None:
        return ""
    data = await reader.read()
    return data.decode(errors="replace")


async def _spawn(command: Sequence[str], env: dict[str, str] | None, **kwargs) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(*command, env=env, **kwargs)
    except OSError as e:
        raise ProcessError(f"{command[0]} process error: {e}") from e


async def _abort(process: asyncio.subprocess.Process, stderr_task: asyncio.Task) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
    await process.wait()
    with contextlib.suppress(Exception):
        await stderr_task


async def dump_process(
    command: Sequence[str], env: dict[str, str] | None, stages: Sequence[Stage], sink: Sink
) -> ProcessOutcome:
    """Run a producer process, streaming its stdout through stages into sink"""
    process = await _spawn(command, env, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
    stderr_task = asyncio.create_task(_collect(process.stderr))
    assert process.stdout is not None

    try:
        await Pipeline(stream_source(process.stdout), stages, sink).run()
    except BaseException:
        await _abort(process, stderr_task)
        raise

    returncode = await process.wait()
    return ProcessOutcome(returncode, await stderr_task)


async def feed_process(
    command: Sequence[str], env: dict[str, str] | None, source: AsyncIterator[bytes], stages: Sequence[Stage]
) -> ProcessOutcome:
    """Run a consumer process, streaming source through stages into its stdin"""
    process = await _spawn(
        command,
        env,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    stderr_task = asyncio.create_task(_collect(process.stderr))
    assert process.stdin is not None

    try:
        await Pipeline(source, stages, ProcessSink(process.stdin)).run()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug(f"{command[0]} closed its input early")
    except BaseException:
        await _abort(process, stderr_task)
        raise

    returncode = await process.wait()
    return ProcessOutcome(returncode, await stderr_task)


async def run_command(command: Sequence[str], env: dict[str, str] | None = None) -> ProcessOutcome:
    """Run a short command to completion, capturing stderr"""
    process = await _spawn(
        command, env, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE
    )
    _, stderr = await process.communicate()
    return ProcessOutcome(process.returncode or 0, stderr.decode(errors="replace"))
