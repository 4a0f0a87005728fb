"""Fetch the release archive from the source server into the deployment tree."""

from __future__ import annotations

import os
import tarfile
from pathlib import Path
from typing import IO, Iterator, Optional

import httpx
import structlog

from deploy_agent.core.exceptions import AuthError, FetchError, StreamError, UnsafeEntryError


logger = structlog.get_logger()

PASSWORD_HEADER = "Password"
COPY_CHUNK_SIZE = 64 * 1024
# setuid, setgid and sticky bits from the archive are never applied.
PERMISSION_MASK = 0o777


class _ChunkReader:
    """Minimal read-only file object over an iterator of byte chunks.

    ``tarfile`` in stream mode only ever calls ``read(size)``.
    """

    def __init__(self, chunks: Iterator[bytes]):
        self._chunks = chunks
        self._buffer = b""
        self._eof = False

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size < 0 or len(self._buffer) < size):
            try:
                self._buffer += next(self._chunks)
            except StopIteration:
                self._eof = True
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data


def source_url(server_address: str) -> str:
    """Build the upstream URL; a bare ``host[:port][/path]`` is fetched over http."""
    if server_address.startswith(("http://", "https://")):
        return server_address
    return "http://" + server_address


def _resolve_entry_path(base: Path, name: str) -> Path:
    """Map an archive entry name onto ``base``, refusing anything that escapes it."""
    member_path = Path(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise UnsafeEntryError(f"Archive entry has an unsafe path: {name}", entry_name=name)
    target = (base / member_path).resolve()
    if target != base and not target.is_relative_to(base):
        raise UnsafeEntryError(f"Archive entry escapes destination: {name}", entry_name=name)
    return target


def _write_file(tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    source = tar.extractfile(member)
    if source is None:
        raise StreamError(f"No content for archive entry {member.name}")
    copied = 0
    with open(target, "wb") as dst:
        while True:
            chunk = source.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            dst.write(chunk)
            copied += len(chunk)
    if copied != member.size:
        raise StreamError(
            f"Archive entry {member.name} truncated: expected {member.size} bytes, got {copied}"
        )
    os.chmod(target, member.mode & PERMISSION_MASK)


def extract_archive(stream: IO[bytes], dest: Path) -> int:
    """Materialize a tar stream under ``dest`` one entry at a time.

    Entries are handled strictly in stream order and never buffered as a
    whole. Directories and regular files are created with the permission
    bits recorded in the archive; other entry types are skipped. Directory
    modes are applied once the stream is exhausted, so a read-only directory
    can still receive the entries that follow it.

    Returns:
        Number of entries written.

    Raises:
        UnsafeEntryError: an entry name resolves outside ``dest``.
        StreamError: the stream is not a readable tar archive or breaks off;
            entries written before the failure are left in place.
    """
    written = 0
    dir_modes = {}
    try:
        dest.mkdir(parents=True, exist_ok=True)
        base = dest.resolve()
        with tarfile.open(fileobj=stream, mode="r|*") as tar:
            for member in tar:
                # Stream mode keeps every header it has read; drop them as we go.
                tar.members = []
                target = _resolve_entry_path(base, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    dir_modes[target] = member.mode & PERMISSION_MASK
                elif member.isreg():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    _write_file(tar, member, target)
                else:
                    logger.warning("Skipping unsupported archive entry", entry=member.name, type=member.type.decode())
                    continue
                written += 1
                logger.info("Wrote archive entry", entry=member.name)
        # Deepest first, so no parent loses its search bit before its children.
        for target in sorted(dir_modes, reverse=True):
            os.chmod(target, dir_modes[target])
    except FetchError:
        raise
    except (tarfile.TarError, OSError, EOFError, httpx.HTTPError) as exc:
        raise StreamError(f"Failed reading archive after {written} entries: {exc}") from exc
    return written


def fetch_archive(
    dest: Path,
    server_address: str,
    server_secret: str,
    *,
    timeout: Optional[float] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> int:
    """Download the latest release archive and extract it into ``dest``.

    The response body is streamed straight into the tar reader. ``dest`` is
    only written to, never cleared.

    Returns:
        Number of entries written.

    Raises:
        AuthError: the source server answered with anything but 200 OK.
        FetchError: the source server could not be reached.
        StreamError, UnsafeEntryError: see ``extract_archive``.
    """
    url = source_url(server_address)
    logger.info("Fetching release archive", url=url, dest=str(dest))
    try:
        with httpx.Client(timeout=httpx.Timeout(timeout), transport=transport) as client:
            with client.stream("GET", url, headers={PASSWORD_HEADER: server_secret}) as resp:
                if resp.status_code != httpx.codes.OK:
                    raise AuthError(
                        f"Source server answered {resp.status_code} {resp.reason_phrase}",
                        status_code=resp.status_code,
                    )
                written = extract_archive(_ChunkReader(resp.iter_bytes(COPY_CHUNK_SIZE)), dest)
    except FetchError:
        raise
    except httpx.HTTPError as exc:
        raise FetchError(f"Source server request failed: {exc}") from exc

    logger.info("Fetched release archive", entries=written)
    return written
