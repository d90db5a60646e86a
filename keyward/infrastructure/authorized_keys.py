"""authorized_keys file management - the one shared mutable file of keyward"""

import asyncio
import os
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import IO, AsyncIterator, Iterable, Iterator, List, Optional, Union

from keyward.core.errors import AccessFileError
from keyward.core.keys.key_types import PublicKey
from keyward.infrastructure.logging import get_logger

try:
    import fcntl
except ImportError:  # Windows has no advisory locks
    fcntl = None

logger = get_logger(__name__)

AUTHORIZED_KEY_TEMPLATE = (
    "command=\"{app_path} serv key-{key_id} --config='{config_path}'\","
    "no-port-forwarding,no-X11-forwarding,no-agent-forwarding,no-pty {content}\n"
)

FILE_MODE = 0o600
DIR_MODE = 0o700

# Lines written by hand may hold any bytes; they are copied through as-is
ENCODING = "utf-8"
ERRORS = "surrogateescape"


class AuthorizedKeysFile:
    """Keeps the authorized_keys file in line with the key registry

    Every mutation runs under one lock: a thread lock for callers in this
    process plus an advisory lock on a sibling ``.lock`` file for other
    processes (the CLI rebuilding while the service appends). Removal and
    rebuild write a temp file and swap it in with ``os.replace``.

    ``add``, ``remove`` and ``rebuild`` take the lock themselves. Async
    callers that must keep registry changes and file changes in one
    critical section hold ``exclusive()`` and call ``append_lines``,
    ``remove_line`` and ``rewrite`` inside it.
    """

    def __init__(
        self,
        ssh_dir: Union[str, Path],
        app_path: str,
        config_path: str,
        filename: str = "authorized_keys",
        use_file_lock: bool = True,
    ):
        self.ssh_dir = Path(ssh_dir)
        self.path = self.ssh_dir / filename
        self.tmp_path = self.ssh_dir / f"{filename}.tmp"
        self.lock_path = self.ssh_dir / f"{filename}.lock"
        self.app_path = app_path.replace("\\", "/")
        self.config_path = config_path
        self.use_file_lock = use_file_lock and fcntl is not None
        self._lock = threading.Lock()
        self._async_lock: Optional[asyncio.Lock] = None

    def format_line(self, key: PublicKey) -> str:
        """Render the forced-command line for one key"""
        return AUTHORIZED_KEY_TEMPLATE.format(
            app_path=self.app_path,
            key_id=key.id,
            config_path=self.config_path,
            content=key.content,
        )

    @staticmethod
    def key_marker(key: PublicKey) -> str:
        return f" key-{key.id} "

    def _access_error(self, operation: str, error: Exception) -> AccessFileError:
        logger.error(
            "authorized_keys_operation_failed",
            operation=operation,
            path=str(self.path),
            error=str(error),
        )
        return AccessFileError(operation, self.path, str(error))

    def _acquire(self, operation: str) -> Optional[IO[str]]:
        """Take the thread lock and the file lock, creating the directory on first use"""
        start_time = time.time()
        self._lock.acquire()
        lock_file = None
        try:
            self.ssh_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            if self.use_file_lock:
                lock_file = open(self.lock_path, "a")
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            if lock_file is not None:
                lock_file.close()
            self._lock.release()
            raise self._access_error(operation, e) from e

        logger.debug(
            "authorized_keys_lock_acquired",
            operation=operation,
            waited=time.time() - start_time,
        )
        return lock_file

    def _release(self, lock_file: Optional[IO[str]]) -> None:
        try:
            if lock_file is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                lock_file.close()
        finally:
            self._lock.release()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Turn OS and decoding failures into AccessFileError"""
        try:
            yield
        except (OSError, UnicodeError) as e:
            raise self._access_error(operation, e) from e

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        lock_file = self._acquire(operation)
        try:
            with self._guard(operation):
                yield
        finally:
            self._release(lock_file)

    @asynccontextmanager
    async def exclusive(self, operation: str) -> AsyncIterator[None]:
        """
        Hold the file lock from async code, across awaits

        Coroutines queue on an asyncio lock first, so at most one worker
        thread ever blocks on the thread lock and the holder always finds a
        free worker for its own file work.

        Raises:
            AccessFileError: If the lock file cannot be opened
        """
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()

        async with self._async_lock:
            lock_file = await asyncio.to_thread(self._acquire, operation)
            try:
                yield
            finally:
                self._release(lock_file)

    def _restrict_permissions(self, f: IO[str]) -> None:
        if os.name == "nt":
            return

        mode = os.fstat(f.fileno()).st_mode & 0o777
        if mode & ~FILE_MODE:
            logger.error(
                "authorized_keys_unusual_permissions",
                path=str(self.path),
                mode=oct(mode),
                new_mode=oct(FILE_MODE),
            )
            os.fchmod(f.fileno(), FILE_MODE)

    def _open_tmp(self) -> IO[str]:
        fd = os.open(self.tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        return os.fdopen(fd, "w", encoding=ENCODING, errors=ERRORS)

    def _swap_in_tmp(self, f: IO[str]) -> None:
        f.flush()
        os.fsync(f.fileno())
        f.close()
        os.replace(self.tmp_path, self.path)

    def _discard_tmp(self) -> None:
        try:
            self.tmp_path.unlink()
        except FileNotFoundError:
            pass

    def append_lines(self, keys: Iterable[PublicKey]) -> None:
        """
        Append one line per key, in order. The caller holds ``exclusive()``.

        A failure part way leaves the lines written so far; rebuilding
        from the registry restores the file.

        Raises:
            AccessFileError: If the file cannot be opened or written
        """
        keys = list(keys)
        with self._guard("add"):
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, FILE_MODE)
            with os.fdopen(fd, "a", encoding=ENCODING, errors=ERRORS) as f:
                self._restrict_permissions(f)
                for key in keys:
                    f.write(self.format_line(key))

        logger.info(
            "authorized_keys_appended",
            count=len(keys),
            key_ids=[key.id for key in keys],
        )

    def remove_line(self, key: PublicKey) -> bool:
        """
        Drop the line of one key, copying every other line through.
        The caller holds ``exclusive()``.

        Returns:
            True if a line was removed

        Raises:
            AccessFileError: If reading, writing or the swap fails
        """
        marker = self.key_marker(key)
        content = key.content.strip()
        found = False

        with self._guard("remove"):
            if not self.path.exists():
                logger.warning("authorized_keys_missing", path=str(self.path), key_id=key.id)
                return False

            dst = self._open_tmp()
            try:
                with open(self.path, "r", encoding=ENCODING, errors=ERRORS) as src:
                    for raw_line in src:
                        line = raw_line.rstrip("\r\n")
                        if not found and marker in line and content in line:
                            found = True
                            continue
                        dst.write(line + "\n")
                self._swap_in_tmp(dst)
            except BaseException:
                dst.close()
                self._discard_tmp()
                raise

        logger.info("authorized_keys_line_removed", key_id=key.id, found=found)
        return found

    def rewrite(self, keys: Iterable[PublicKey]) -> int:
        """
        Replace the whole file with the given keys. The caller holds ``exclusive()``.

        Returns:
            Number of lines written

        Raises:
            AccessFileError: If writing or the swap fails
        """
        count = 0
        with self._guard("rebuild"):
            dst = self._open_tmp()
            try:
                for key in keys:
                    dst.write(self.format_line(key))
                    count += 1
                self._swap_in_tmp(dst)
            except BaseException:
                dst.close()
                self._discard_tmp()
                raise

        logger.info("authorized_keys_rebuilt", path=str(self.path), count=count)
        return count

    def add(self, *keys: PublicKey) -> None:
        """Append one line per key under the lock"""
        with self._locked("add"):
            self.append_lines(keys)

    def remove(self, key: PublicKey) -> bool:
        """Drop the line of one key under the lock"""
        with self._locked("remove"):
            return self.remove_line(key)

    def rebuild(self, keys: Iterable[PublicKey]) -> int:
        """Rewrite the whole file from the given keys under the lock"""
        with self._locked("rebuild"):
            return self.rewrite(keys)

    def read_lines(self) -> List[str]:
        """Current lines of the file, without line endings"""
        with self._locked("read"):
            if not self.path.exists():
                return []
            with open(self.path, "r", encoding=ENCODING, errors=ERRORS) as f:
                return [line.rstrip("\r\n") for line in f]

    def permissions(self) -> int:
        """Permission bits of the file, for diagnostics"""
        return self.path.stat().st_mode & 0o777
