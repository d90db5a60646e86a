"""ssh-keygen backed key inspection"""

import asyncio
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from keyward.core.errors import OracleError, OracleTimeoutError
from keyward.core.keys.inspector import KeyInspector
from keyward.core.keys.key_types import InspectionResult
from keyward.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SshKeygenInspector(KeyInspector):
    """Runs ``ssh-keygen -l -f <path>`` with a bounded wait"""

    def __init__(self, ssh_keygen: str = "ssh-keygen", timeout: float = 10.0):
        """
        Initialize inspector

        Args:
            ssh_keygen: Path to the ssh-keygen binary
            timeout: Seconds to wait before the process is killed
        """
        self.ssh_keygen = ssh_keygen
        self.timeout = timeout

    def build_command(self, path: Path) -> List[str]:
        return [self.ssh_keygen, "-l", "-f", str(path)]

    def _environment(self) -> Dict[str, str]:
        env = {
            k: v
            for k, v in os.environ.items()
            if k.startswith(("PATH", "HOME", "USER", "SYSTEMROOT"))
        }
        # Consistent, untranslated output
        env["LC_ALL"] = "C"
        return env

    async def inspect(self, path: Path) -> InspectionResult:
        """
        Inspect a key file

        Raises:
            OracleError: If ssh-keygen cannot be started or exits non-zero
            OracleTimeoutError: If ssh-keygen does not finish in time
        """
        cmd = self.build_command(path)
        command = " ".join(cmd[:-1])

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._environment(),
            )
        except OSError as e:
            logger.error("ssh_keygen_start_failed", command=command, error=str(e))
            raise OracleError(command, str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error("ssh_keygen_timeout", command=command, timeout=self.timeout)
            raise OracleTimeoutError(command, self.timeout)

        stdout_text = stdout.decode("utf-8", errors="replace")
        stderr_text = stderr.decode("utf-8", errors="replace")

        if process.returncode != 0:
            logger.warning(
                "ssh_keygen_failed",
                command=command,
                exit_code=process.returncode,
                stderr=stderr_text.strip(),
            )
            raise OracleError(command, stderr_text.strip() or f"exit code {process.returncode}")

        return InspectionResult(stdout=stdout_text, stderr=stderr_text)


def find_ssh_keygen(ssh_keygen: str = "ssh-keygen") -> Optional[str]:
    """Resolve the ssh-keygen binary on PATH, or None when it is missing"""
    return shutil.which(ssh_keygen)
