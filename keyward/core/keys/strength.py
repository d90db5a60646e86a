"""Key strength validation module - enforces minimum key sizes per algorithm"""

from typing import Dict, Optional

from keyward.core.errors import KeyFormatError, OracleError, WeakKeyError
from keyward.core.keys.inspector import KeyInspector, key_file
from keyward.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Minimum accepted bits, keyed by the label ssh-keygen prints last
MINIMUM_KEY_SIZES: Dict[str, int] = {
    "(ED25519)": 256,
    "(ECDSA)": 256,
    "(NTRU)": 1087,
    "(MCE)": 1702,
    "(McE)": 1702,
    "(RSA)": 2048,
    "(DSA)": 1024,
}


class KeyStrengthValidator:
    """Handles key strength validation only"""

    COMMAND = "ssh-keygen -l -f"
    TEMP_FILENAME = "keytest"

    def __init__(
        self,
        inspector: KeyInspector,
        minimum_sizes: Optional[Dict[str, int]] = None,
        skip_type_check: bool = False,
    ):
        """
        Args:
            inspector: Key inspection capability
            minimum_sizes: Minimum bits per algorithm label
            skip_type_check: Accept once output is sane, for inspectors that
                do not report the algorithm (ssh-keygen on Windows)
        """
        self.inspector = inspector
        self.minimum_sizes = dict(MINIMUM_KEY_SIZES if minimum_sizes is None else minimum_sizes)
        self.skip_type_check = skip_type_check

    async def validate(self, key_text: str) -> bool:
        """
        Check that a single-line public key is recognised and strong enough

        Args:
            key_text: Canonical single-line public key

        Returns:
            True when the key is accepted

        Raises:
            KeyFormatError: If the text holds more than one line
            OracleError: If the inspector fails or its output is unusable
            WeakKeyError: If the key is too small or of an unknown type
        """
        key_text = key_text.rstrip("\r\n")
        if "\n" in key_text or "\r" in key_text:
            raise KeyFormatError("only a single line with a single key please")

        async with key_file(key_text, self.TEMP_FILENAME) as path:
            result = await self.inspector.inspect(path)

        stdout = result.stdout
        if len(stdout) < 2:
            raise OracleError(
                self.COMMAND,
                f"not enough output to evaluate the key: {stdout}"
            )

        if self.skip_type_check:
            return True

        fields = result.fields
        if len(fields) < 4:
            raise OracleError(self.COMMAND, "unable to verify public key")

        key_size = self._parse_size(fields[0])
        if key_size <= 0:
            raise WeakKeyError("cannot get key size of the given key")

        key_type = fields[-1].strip()
        minimum = self.minimum_sizes.get(key_type)
        if not minimum:
            raise WeakKeyError("sorry, unrecognized public key type", algorithm=key_type)

        if key_size < minimum:
            raise WeakKeyError(
                f"the minimum accepted size of a public key {key_type} is {minimum}",
                algorithm=key_type,
                minimum_bits=minimum,
            )

        logger.debug("key_strength_accepted", key_type=key_type, bits=key_size)
        return True

    @staticmethod
    def _parse_size(field: str) -> int:
        try:
            return int(field)
        except ValueError:
            return 0
