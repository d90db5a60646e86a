"""Pytest configuration and fixtures"""

import base64
import hashlib
import logging
import struct
from pathlib import Path
from typing import AsyncGenerator, Callable, List, Optional, Union

import pytest
import pytest_asyncio
import structlog

from keyward.application.services.key_service import PublicKeyService
from keyward.core.errors import OracleError
from keyward.core.keys.fingerprint import FingerprintExtractor
from keyward.core.keys.inspector import KeyInspector
from keyward.core.keys.key_types import InspectionResult, PublicKey
from keyward.core.keys.parser import KeyFormatParser
from keyward.core.keys.strength import KeyStrengthValidator
from keyward.infrastructure.authorized_keys import AuthorizedKeysFile
from keyward.infrastructure.database import DatabaseConnection, SQLAlchemyKeyRegistry

APP_PATH = "/usr/local/bin/keyward"
CONFIG_PATH = "/etc/keyward/app.ini"


def make_key_blob(key_type: str, payload: bytes = b"\x00\x00\x00\x03\x01\x00\x01" + b"\x42" * 64) -> str:
    """Build a base64 key blob with the RFC 4253 length-prefixed type header"""
    name = key_type.encode("ascii")
    return base64.b64encode(struct.pack(">I", len(name)) + name + payload).decode("ascii")


def default_oracle_output(content: str) -> str:
    """ssh-keygen -l style output with a fingerprint derived from the key"""
    digest = hashlib.sha256(content.split()[1].encode()).digest() if " " in content else b""
    fingerprint = "SHA256:" + base64.b64encode(digest).decode().rstrip("=")
    return f"2048 {fingerprint} user@host (RSA)\n"


class FakeInspector(KeyInspector):
    """Inspector returning canned ssh-keygen output without spawning processes"""

    def __init__(
        self,
        output: Union[str, Callable[[str], str], None] = None,
        error: Optional[Exception] = None,
    ):
        self.output = output if output is not None else default_oracle_output
        self.error = error
        self.paths: List[Path] = []
        self.contents: List[str] = []

    async def inspect(self, path: Path) -> InspectionResult:
        self.paths.append(path)
        content = path.read_text(encoding="utf-8")
        self.contents.append(content)

        if self.error is not None:
            raise self.error

        stdout = self.output(content) if callable(self.output) else self.output
        return InspectionResult(stdout=stdout)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo logging configuration done by CLI tests"""
    yield
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


@pytest.fixture
def key_blob() -> Callable[..., str]:
    return make_key_blob


@pytest.fixture
def rsa_key() -> str:
    return f"ssh-rsa {make_key_blob('ssh-rsa')} user@host"


@pytest.fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def ssh_dir(tmp_path: Path) -> Path:
    return tmp_path / ".ssh"


@pytest.fixture
def authorized_keys(ssh_dir: Path) -> AuthorizedKeysFile:
    return AuthorizedKeysFile(ssh_dir, app_path=APP_PATH, config_path=CONFIG_PATH)


@pytest.fixture
def make_key() -> Callable[..., PublicKey]:
    """Build registered-looking keys with distinct content per id"""

    def factory(key_id: int, owner_id: int = 1, comment: str = "") -> PublicKey:
        blob = make_key_blob("ssh-ed25519", payload=struct.pack(">I", key_id) * 8)
        content = f"ssh-ed25519 {blob}" + (f" {comment}" if comment else "")
        return PublicKey(
            id=key_id,
            owner_id=owner_id,
            name=f"key-{key_id}",
            fingerprint=f"SHA256:fp{key_id}",
            content=content,
        )

    return factory


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[DatabaseConnection, None]:
    """File backed SQLite database with tables created"""
    connection = DatabaseConnection(f"sqlite:///{tmp_path / 'keyward.db'}")
    await connection.connect()
    await connection.create_all()
    yield connection
    await connection.disconnect()


@pytest.fixture
def registry(database: DatabaseConnection) -> SQLAlchemyKeyRegistry:
    return SQLAlchemyKeyRegistry(database)


@pytest.fixture
def key_service(
    fake_inspector: FakeInspector,
    registry: SQLAlchemyKeyRegistry,
    authorized_keys: AuthorizedKeysFile,
) -> PublicKeyService:
    return PublicKeyService(
        parser=KeyFormatParser(),
        strength_validator=KeyStrengthValidator(fake_inspector),
        fingerprint_extractor=FingerprintExtractor(fake_inspector),
        registry=registry,
        authorized_keys=authorized_keys,
    )


@pytest.fixture
def failing_inspector() -> FakeInspector:
    return FakeInspector(error=OracleError("ssh-keygen -l -f", "is not a public key file"))
