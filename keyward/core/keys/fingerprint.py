"""Fingerprint extraction module"""

from keyward.core.errors import OracleError
from keyward.core.keys.inspector import KeyInspector, key_file


class FingerprintExtractor:
    """Computes the fingerprint used to deduplicate keys across owners"""

    COMMAND = "ssh-keygen -l -f"
    TEMP_FILENAME = "id_rsa.pub"

    def __init__(self, inspector: KeyInspector):
        self.inspector = inspector

    async def fingerprint(self, content: str) -> str:
        """
        Return the fingerprint of a canonical public key

        Raises:
            OracleError: If the inspector fails or prints too little
        """
        async with key_file(content, self.TEMP_FILENAME) as path:
            result = await self.inspector.inspect(path)

        fields = result.fields
        if len(result.stdout) < 2 or len(fields) < 2 or not fields[1]:
            raise OracleError(
                self.COMMAND,
                f"not enough output for calculating fingerprint: {result.stdout}"
            )

        return fields[1].strip()
