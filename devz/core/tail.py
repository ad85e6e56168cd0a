"""
Tail streams for DevZ.

A TailStream surfaces the bytes appended to one log file as discrete lines.
Where the bytes come from is delegated to a TailSource backend: a long-lived
``tail -f`` helper subprocess, or seek-based polling of the file.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..config.settings import Settings
from .errors import TailSpawnError
from .models import Classification, LogLine, MonitoredDirectory

logger = logging.getLogger(__name__)

_READ_SIZE = Settings().TAIL_READ_SIZE


class TailSource(ABC):
    """
    Capability that follows one file and yields its appended bytes.
    """

    @abstractmethod
    async def attach(self, path: Path, offset: int) -> None:
        """
        Start following path from offset.

        Raises:
            TailSpawnError: If following cannot start
        """

    @abstractmethod
    async def read(self) -> bytes:
        """Wait for the next chunk; an empty result means the source ended."""

    @abstractmethod
    def detach(self) -> None:
        """Stop following. Safe to call more than once or before attach finishes."""

    async def wait_closed(self) -> None:
        """Wait until any resources held by the source are released."""


class FollowTailSource(TailSource):
    """
    Follows a file with a ``tail -f`` helper subprocess.
    """

    def __init__(self, command: str = Settings().DEFAULT_TAIL_COMMAND, read_size: int = _READ_SIZE):
        self.command = command
        self.read_size = read_size
        self.process: Optional[asyncio.subprocess.Process] = None
        self.path: Optional[Path] = None
        self._detached = False

    async def attach(self, path: Path, offset: int) -> None:
        self.path = path
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command, '-c', f'+{offset + 1}', '-f', str(path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise TailSpawnError(f"Could not start {self.command} for {path}: {e}") from e
        logger.debug(f"Started tail helper (pid {self.process.pid}) for {path}")

    async def read(self) -> bytes:
        if self.process is None or self.process.stdout is None:
            return b''
        chunk = await self.process.stdout.read(self.read_size)
        if chunk:
            return chunk

        returncode = await self.process.wait()
        if returncode != 0 and not self._detached:
            logger.warning(f"Tail helper for {self.path} exited with code {returncode}")
        return b''

    def detach(self) -> None:
        self._detached = True
        if self.process is None or self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"Ignoring error while killing tail helper for {self.path}: {e}")

    async def wait_closed(self) -> None:
        if self.process is not None:
            await self.process.wait()


class PollingTailSource(TailSource):
    """
    Follows a file by seeking to the last read position on a poll interval.
    """

    def __init__(self, poll_interval: float = Settings().DEFAULT_POLL_INTERVAL, read_size: int = _READ_SIZE):
        self.poll_interval = poll_interval
        self.read_size = read_size
        self.path: Optional[Path] = None
        self._file = None
        self._detached = False

    async def attach(self, path: Path, offset: int) -> None:
        self.path = path
        try:
            self._file = await asyncio.get_running_loop().run_in_executor(None, self._open, path, offset)
        except OSError as e:
            raise TailSpawnError(f"Could not open {path} for tailing: {e}") from e

    @staticmethod
    def _open(path: Path, offset: int):
        f = open(path, 'rb')
        f.seek(offset)
        return f

    async def read(self) -> bytes:
        loop = asyncio.get_running_loop()
        while not self._detached and self._file is not None:
            data = await loop.run_in_executor(None, self._read_available)
            if data is None:
                return b''
            if data:
                return data
            await asyncio.sleep(self.poll_interval)
        return b''

    def _read_available(self) -> Optional[bytes]:
        """Read whatever is there; None once the file is gone or closed."""
        try:
            data = self._file.read(self.read_size)
            if data:
                return data
            size = os.stat(self.path).st_size
            if size < self._file.tell():
                # Truncated in place; start over from the top
                self._file.seek(0)
                return self._file.read(self.read_size)
        except FileNotFoundError:
            return None
        except ValueError:
            # closed by detach()
            return None
        return b''

    def detach(self) -> None:
        self._detached = True
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.debug(f"Ignoring error while closing {self.path}: {e}")


class TailStream:
    """
    Turns the appended bytes of one file into LogLines.

    Only complete lines are emitted; a trailing partial line is held until
    its newline arrives. Lines are stamped with the time they were observed.
    """

    def __init__(self, file_path: Path, classification: Classification,
                 directory: MonitoredDirectory, source: TailSource,
                 on_line: Callable[[LogLine], None], start_offset: Optional[int] = None):
        """
        Initialize the tail stream.

        Args:
            file_path: File to follow
            classification: Category of the file
            directory: Directory that owns this stream
            source: Backend providing appended bytes
            on_line: Called with every complete line
            start_offset: Byte offset to start from; the current size if None
        """
        self.file_path = file_path
        self.classification = classification
        self.directory = directory
        self.source = source
        self.on_line = on_line
        self.start_offset = start_offset
        self.last_known_offset = 0
        self._buffer = b''
        self._reader: Optional[asyncio.Task] = None
        self._detached = False

    @property
    def is_active(self) -> bool:
        return self._reader is not None and not self._reader.done() and not self._detached

    @property
    def is_detached(self) -> bool:
        return self._detached

    async def start(self):
        """
        Record the starting offset and begin following.

        Raises:
            TailSpawnError: If the file vanished or the source cannot attach
        """
        if self.start_offset is None:
            try:
                self.start_offset = os.stat(self.file_path).st_size
            except OSError as e:
                raise TailSpawnError(f"Cannot stat {self.file_path}: {e}") from e
        self.last_known_offset = self.start_offset

        await self.source.attach(self.file_path, self.start_offset)
        if self._detached:
            # Detached while the helper was starting
            self.source.detach()
            await self.source.wait_closed()
            return
        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self):
        try:
            while True:
                chunk = await self.source.read()
                if not chunk:
                    break
                self.feed(chunk)
        except OSError as e:
            logger.warning(f"Error tailing file {self.file_path}: {e}")
        logger.debug(f"Tail stream ended for {self.file_path}")

    def feed(self, chunk: bytes):
        """Buffer a chunk of bytes and emit every completed line."""
        self.last_known_offset += len(chunk)
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(b'\n')
        for raw in complete:
            text = raw.decode('utf-8', errors='replace').rstrip('\r')
            if not text.strip():
                continue
            self._emit(text)

    def _emit(self, text: str):
        line = LogLine(
            raw_text=text,
            observed_at=datetime.now(),
            classification=self.classification,
            role=self.directory.role,
            file_path=self.file_path,
        )
        try:
            self.on_line(line)
        except Exception as e:
            logger.error(f"Error processing new log line from {self.file_path}: {str(e)}")

    def detach(self):
        """Stop following and kill the helper."""
        self._detached = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self.source.detach()

    async def wait_closed(self):
        """Wait for the reader and the helper to finish after detach()."""
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        await self.source.wait_closed()
