"""SSH key parsing module - turns submitted key text into canonical OpenSSH form"""

import base64
import binascii
import struct
from typing import List

from keyward.core.errors import KeyFormatError
from keyward.core.keys.key_types import ParsedKey

INVALID_KEY_FORMAT = "invalid key format"


def extract_key_type(content: str) -> str:
    """
    Read the algorithm name embedded at the start of a base64 key blob

    The decoded blob starts with a 4 byte big-endian length followed by
    that many bytes of algorithm name (RFC 4253 string encoding).

    Args:
        content: Base64 encoded key blob

    Returns:
        The embedded algorithm name, e.g. ``ssh-ed25519``

    Raises:
        KeyFormatError: If the blob cannot be decoded or is truncated
    """
    try:
        blob = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        raise KeyFormatError(INVALID_KEY_FORMAT)

    if len(blob) < 4:
        raise KeyFormatError(INVALID_KEY_FORMAT)

    (length,) = struct.unpack(">I", blob[:4])
    if len(blob) < 4 + length:
        raise KeyFormatError(INVALID_KEY_FORMAT)

    try:
        return blob[4:4 + length].decode("ascii")
    except UnicodeDecodeError:
        raise KeyFormatError(INVALID_KEY_FORMAT)


class KeyFormatParser:
    """Handles SSH public key text parsing only"""

    # SSH2 lines containing any of these are headers or BEGIN/END markers
    SSH2_SKIP_CHARS = (":", "-")
    SSH2_CONTINUATION = "\\"

    def parse(self, raw_text: str) -> ParsedKey:
        """
        Parse an OpenSSH single-line or SSH2 multi-line public key

        Args:
            raw_text: The key text as submitted

        Returns:
            ParsedKey with type, base64 content and comment

        Raises:
            KeyFormatError: If the key is empty or cannot be decoded
        """
        text = (raw_text or "").strip()
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        lines = text.split("\n")

        if len(lines) == 1:
            return self._parse_openssh(lines[0])
        return self._parse_ssh2(lines)

    def parse_canonical(self, raw_text: str) -> str:
        """Parse and return the canonical ``type content [comment]`` string"""
        return self.parse(raw_text).canonical

    def _parse_openssh(self, line: str) -> ParsedKey:
        parts = line.split()

        if not parts:
            raise KeyFormatError("empty key")

        if len(parts) == 1:
            content = parts[0]
            return ParsedKey(extract_key_type(content), content)

        key_type, content = parts[0], parts[1]
        comment = parts[2] if len(parts) > 2 else ""

        embedded_type = extract_key_type(content)
        if embedded_type != key_type:
            raise KeyFormatError(
                f"key type mismatch: declared '{key_type}' "
                f"but key content is '{embedded_type}'"
            )

        return ParsedKey(key_type, content, comment)

    def _parse_ssh2(self, lines: List[str]) -> ParsedKey:
        content = ""
        continuation = False

        for line in lines:
            if continuation or any(c in line for c in self.SSH2_SKIP_CHARS):
                # A header ending in a backslash carries on to the next line
                continuation = line.endswith(self.SSH2_CONTINUATION)
            else:
                content += line

        return ParsedKey(extract_key_type(content), content)
