"""Base exception classes for keyward"""

from pathlib import Path
from typing import Any, Dict, Optional, Union


class KeywardError(Exception):
    """Base exception for all keyward errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class KeyFormatError(KeywardError):
    """Raised when submitted key text is malformed or cannot be decoded"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason, {"reason": reason})


class WeakKeyError(KeywardError):
    """Raised when a key is below the minimum size or of an unknown algorithm"""

    def __init__(
        self,
        reason: str,
        algorithm: Optional[str] = None,
        minimum_bits: Optional[int] = None,
    ):
        self.algorithm = algorithm
        self.minimum_bits = minimum_bits
        super().__init__(
            reason,
            {"algorithm": algorithm, "minimum_bits": minimum_bits}
        )


class DuplicateKeyError(KeywardError):
    """Raised when a key name or fingerprint is already registered"""

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(
            f"Public key with {field} '{value}' already exists",
            {"field": field, "value": value}
        )


class KeyNotFoundError(KeywardError):
    """Raised when an operation references an unknown key id"""

    def __init__(self, key_id: Any):
        self.key_id = key_id
        super().__init__(
            f"Public key not found: {key_id}",
            {"resource_type": "PublicKey", "resource_id": str(key_id)}
        )


class OracleError(KeywardError):
    """Raised when the key inspection process fails or returns too little output"""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(
            f"{command}: {reason}",
            {"command": command, "reason": reason}
        )


class OracleTimeoutError(OracleError):
    """Raised when the key inspection process does not finish in time"""

    def __init__(self, command: str, timeout: float):
        self.timeout = timeout
        super().__init__(command, f"timed out after {timeout} seconds")


class AccessFileError(KeywardError):
    """Raised when reading or writing the authorized_keys file fails"""

    def __init__(self, operation: str, path: Union[str, Path], reason: str):
        self.operation = operation
        self.path = str(path)
        self.reason = reason
        super().__init__(
            f"authorized_keys {operation} failed for {path}: {reason}",
            {"operation": operation, "path": str(path), "reason": reason}
        )


class InconsistentStateError(KeywardError):
    """Raised when a failed write could not be rolled back in the registry

    The registry row exists but its authorized_keys line does not. Rebuilding
    the authorized_keys file from the registry repairs this.
    """

    def __init__(self, error: Exception, rollback_error: Exception):
        self.error = error
        self.rollback_error = rollback_error
        super().__init__(
            f"{error}; rollback also failed: {rollback_error}",
            {"error": str(error), "rollback_error": str(rollback_error)}
        )
