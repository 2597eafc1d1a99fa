"""
Remote file access for the log tailer.

The tailer only needs four operations: stat, ranged read, full read and full
write. SftpFileAccessor talks to the game host over SFTP (asyncssh) and keeps
one connection open across polls, reconnecting after any failure.
LocalFileAccessor serves the same interface from a local directory, which is
handy for servers that share a filesystem with the monitor and for tests.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

import asyncssh

from .config import SFTP_CONNECT_TIMEOUT

log = logging.getLogger("GameLogMonitor.RemoteFiles")


class RemoteFileError(Exception):
    """Any failure talking to the remote host."""


class RemoteFileNotFoundError(RemoteFileError):
    """The requested path does not exist on the remote host."""


@dataclass
class RemoteStat:
    size: int


class RemoteFileAccessor:
    async def stat(self, path: str) -> RemoteStat:
        raise NotImplementedError

    async def read_range(self, path: str, start: int, end: int) -> bytes:
        """Bytes in [start, end)."""
        raise NotImplementedError

    async def read_full(self, path: str) -> bytes:
        raise NotImplementedError

    async def write_full(self, path: str, data: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LocalFileAccessor(RemoteFileAccessor):
    """Serves remote-style paths from a local root directory."""

    def __init__(self, root: str = '/'):
        self.root = root

    def _resolve(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip('/'))

    async def stat(self, path: str) -> RemoteStat:
        local = self._resolve(path)
        try:
            st = await asyncio.to_thread(os.stat, local)
        except FileNotFoundError as e:
            raise RemoteFileNotFoundError(f"No such file: {path}") from e
        except OSError as e:
            raise RemoteFileError(f"stat failed for {path}: {e}") from e
        return RemoteStat(size=st.st_size)

    def _blocking_read(self, local: str, start: int, end: Optional[int]) -> bytes:
        with open(local, 'rb') as f:
            f.seek(start)
            if end is None:
                return f.read()
            return f.read(max(end - start, 0))

    async def read_range(self, path: str, start: int, end: int) -> bytes:
        if end <= start:
            return b''
        try:
            return await asyncio.to_thread(self._blocking_read, self._resolve(path), start, end)
        except FileNotFoundError as e:
            raise RemoteFileNotFoundError(f"No such file: {path}") from e
        except OSError as e:
            raise RemoteFileError(f"read failed for {path}: {e}") from e

    async def read_full(self, path: str) -> bytes:
        try:
            return await asyncio.to_thread(self._blocking_read, self._resolve(path), 0, None)
        except FileNotFoundError as e:
            raise RemoteFileNotFoundError(f"No such file: {path}") from e
        except OSError as e:
            raise RemoteFileError(f"read failed for {path}: {e}") from e

    async def write_full(self, path: str, data: bytes) -> None:
        local = self._resolve(path)

        def _write():
            with open(local, 'wb') as f:
                f.write(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise RemoteFileError(f"write failed for {path}: {e}") from e


class SftpFileAccessor(RemoteFileAccessor):
    """SFTP client with a lazily opened, reused connection."""

    def __init__(self, host: str, port: int, username: str, password: str,
                 connect_timeout: float = SFTP_CONNECT_TIMEOUT, known_hosts: Optional[str] = None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        # None skips host key verification.
        self.known_hosts = known_hosts
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._sftp: Optional[asyncssh.SFTPClient] = None

    async def _client(self) -> asyncssh.SFTPClient:
        if self._sftp is not None:
            return self._sftp
        try:
            self._conn = await asyncio.wait_for(
                asyncssh.connect(self.host, port=self.port, username=self.username,
                                 password=self.password, known_hosts=self.known_hosts or None),
                timeout=self.connect_timeout,
            )
            self._sftp = await self._conn.start_sftp_client()
            log.info(f"Connected to SFTP server {self.host}:{self.port}")
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            await self._reset()
            raise RemoteFileError(f"Cannot connect to {self.host}:{self.port}: {e}") from e
        return self._sftp

    async def _reset(self):
        if self._sftp is not None:
            self._sftp.exit()
        if self._conn is not None:
            self._conn.close()
        self._sftp = None
        self._conn = None

    async def _fail(self, path: str, op: str, exc: Exception):
        if isinstance(exc, asyncssh.SFTPNoSuchFile):
            raise RemoteFileNotFoundError(f"No such file: {path}") from exc
        # Drop the connection so the next call starts from a clean session.
        await self._reset()
        raise RemoteFileError(f"{op} failed for {path}: {exc}") from exc

    async def stat(self, path: str) -> RemoteStat:
        sftp = await self._client()
        try:
            attrs = await sftp.stat(path)
        except (OSError, asyncssh.Error) as e:
            await self._fail(path, 'stat', e)
        return RemoteStat(size=attrs.size or 0)

    async def read_range(self, path: str, start: int, end: int) -> bytes:
        if end <= start:
            return b''
        sftp = await self._client()
        chunks = []
        remaining = end - start
        offset = start
        try:
            async with sftp.open(path, 'rb') as f:
                while remaining > 0:
                    chunk = await f.read(remaining, offset)
                    if not chunk:
                        break
                    chunks.append(chunk)
                    offset += len(chunk)
                    remaining -= len(chunk)
        except (OSError, asyncssh.Error) as e:
            await self._fail(path, 'read', e)
        return b''.join(chunks)

    async def read_full(self, path: str) -> bytes:
        sftp = await self._client()
        try:
            async with sftp.open(path, 'rb') as f:
                return await f.read()
        except (OSError, asyncssh.Error) as e:
            await self._fail(path, 'read', e)

    async def write_full(self, path: str, data: bytes) -> None:
        sftp = await self._client()
        try:
            async with sftp.open(path, 'wb') as f:
                await f.write(data)
        except (OSError, asyncssh.Error) as e:
            await self._fail(path, 'write', e)

    async def close(self) -> None:
        await self._reset()
