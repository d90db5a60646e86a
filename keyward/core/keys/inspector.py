"""Key inspection capability - the only channel for cryptographic key inspection"""

import asyncio
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiofiles

from keyward.core.keys.key_types import InspectionResult


class KeyInspector(ABC):
    """Inspects a public key file and reports size, fingerprint and algorithm"""

    @abstractmethod
    async def inspect(self, path: Path) -> InspectionResult:
        """
        Inspect the key stored at ``path``

        Output is expected as ``<bits> <fingerprint> ... (<LABEL>)``.

        Raises:
            OracleError: If the inspection process fails
        """


@asynccontextmanager
async def key_file(content: str, filename: str) -> AsyncIterator[Path]:
    """
    Write key content into a fresh private directory for inspection

    Each call gets its own directory so concurrent callers never share a
    path. The directory is removed on every exit path.
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="keyward-"))
    path = tmp_dir / filename
    try:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
        yield path
    finally:
        await asyncio.to_thread(shutil.rmtree, tmp_dir, True)
