"""Public key management service.

This service orchestrates key acceptance, deletion and authorized_keys
maintenance by combining Core key handling with the registry and the
authorized_keys file.

Adding a key is a two step saga: the registry row is inserted first, then
the authorized_keys line is appended. When the append fails the row is
deleted again. The registry is authoritative; ``rebuild_authorized_keys``
recomputes the file from it after a crash between the two steps.

Add, delete and rebuild each run their registry and file steps inside one
``AuthorizedKeysFile.exclusive`` section, so they never interleave.
"""

import asyncio
from typing import List, Optional

from keyward.application.services.base import ServiceBase
from keyward.core.config import Settings
from keyward.core.errors import (
    AccessFileError,
    DuplicateKeyError,
    InconsistentStateError,
    KeyFormatError,
    OracleError,
    WeakKeyError,
)
from keyward.core.keys.fingerprint import FingerprintExtractor
from keyward.core.keys.inspector import KeyInspector
from keyward.core.keys.key_types import ParsedKey, PublicKey
from keyward.core.keys.parser import KeyFormatParser
from keyward.core.keys.registry import KeyRegistry
from keyward.core.keys.strength import KeyStrengthValidator
from keyward.infrastructure.authorized_keys import AuthorizedKeysFile
from keyward.infrastructure.database import DatabaseConnection, SQLAlchemyKeyRegistry
from keyward.infrastructure.ssh_keygen import SshKeygenInspector

USER_ERRORS = (KeyFormatError, WeakKeyError, DuplicateKeyError)


class PublicKeyService(ServiceBase):
    """Service for SSH public key management operations."""

    def __init__(
        self,
        parser: KeyFormatParser,
        strength_validator: KeyStrengthValidator,
        fingerprint_extractor: FingerprintExtractor,
        registry: KeyRegistry,
        authorized_keys: AuthorizedKeysFile,
        connection: Optional[DatabaseConnection] = None,
    ):
        """Initialize key service.

        Args:
            parser: Parser for submitted key text
            strength_validator: Minimum key size policy
            fingerprint_extractor: Fingerprint calculation
            registry: Durable key store
            authorized_keys: The synchronized authorized_keys file
            connection: Database connection owned by this service, if any
        """
        super().__init__()
        self.parser = parser
        self.strength_validator = strength_validator
        self.fingerprint_extractor = fingerprint_extractor
        self.registry = registry
        self.authorized_keys = authorized_keys
        self.connection = connection

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        inspector: Optional[KeyInspector] = None,
    ) -> "PublicKeyService":
        """Wire a service from settings, resolving paths once."""
        inspector = inspector or SshKeygenInspector(
            settings.ssh_keygen_path, timeout=settings.oracle_timeout
        )
        connection = DatabaseConnection(settings.database_url)
        return cls(
            parser=KeyFormatParser(),
            strength_validator=KeyStrengthValidator(
                inspector, skip_type_check=settings.key_type_check_disabled
            ),
            fingerprint_extractor=FingerprintExtractor(inspector),
            registry=SQLAlchemyKeyRegistry(connection),
            authorized_keys=AuthorizedKeysFile(
                settings.ssh_dir,
                app_path=settings.app_path,
                config_path=settings.config_path,
                filename=settings.authorized_keys_name,
            ),
            connection=connection,
        )

    async def initialize(self) -> None:
        """Connect the owned database and create missing tables."""
        if self.connection is not None:
            await self.connection.connect()
            await self.connection.create_all()
        self.logger.info(
            "key_service_initialized", authorized_keys=str(self.authorized_keys.path)
        )

    async def cleanup(self) -> None:
        """Release the owned database connection."""
        if self.connection is not None:
            await self.connection.disconnect()
        self.logger.info("key_service_cleanup")

    async def check_key(self, raw_text: str) -> ParsedKey:
        """Parse submitted key text and enforce the strength policy.

        Raises:
            KeyFormatError: If the text is not a public key
            WeakKeyError: If the key is too small or unrecognized
            OracleError: If ssh-keygen fails
        """
        try:
            parsed = self.parser.parse(raw_text)
            await self.strength_validator.validate(parsed.canonical)
            return parsed
        except USER_ERRORS as e:
            self.logger.info("key_rejected", reason=e.message)
            raise
        except OracleError as e:
            self.logger.error("key_inspection_failed", error=e.message)
            raise

    async def add_key(self, owner_id: int, name: str, raw_text: str) -> PublicKey:
        """Accept a new key for an owner and authorize it.

        Args:
            owner_id: Owning user id
            name: Key name, unique per owner
            raw_text: OpenSSH or SSH2 key text

        Returns:
            The registered key

        Raises:
            KeyFormatError, WeakKeyError: For unacceptable keys
            DuplicateKeyError: If the name or fingerprint is taken
            OracleError: If ssh-keygen fails
            AccessFileError: If authorized_keys could not be written
            InconsistentStateError: If the rollback after a write failure fails
        """
        parsed = await self.check_key(raw_text)
        candidate = PublicKey(owner_id=owner_id, name=name, content=parsed.canonical)

        try:
            candidate.fingerprint = await self.fingerprint_extractor.fingerprint(
                candidate.content
            )
        except OracleError as e:
            self.logger.error("fingerprint_failed", owner_id=owner_id, error=e.message)
            raise

        if await self.registry.exists(candidate):
            self.logger.info("key_name_taken", owner_id=owner_id, name=name)
            raise DuplicateKeyError("name", name)

        if await self.registry.exists_by_fingerprint(candidate.fingerprint):
            self.logger.info(
                "key_fingerprint_taken", owner_id=owner_id, fingerprint=candidate.fingerprint
            )
            raise DuplicateKeyError("fingerprint", candidate.fingerprint)

        async with self.authorized_keys.exclusive("add"):
            key = await self.registry.insert(candidate)

            try:
                await asyncio.to_thread(self.authorized_keys.append_lines, [key])
            except AccessFileError as e:
                self.logger.error("authorized_keys_add_failed", key_id=key.id, error=e.message)
                try:
                    await self.registry.delete(key)
                except Exception as rollback_error:
                    self.logger.error(
                        "key_rollback_failed",
                        key_id=key.id,
                        error=str(rollback_error),
                        repair="rebuild authorized_keys from the registry",
                    )
                    raise InconsistentStateError(e, rollback_error) from rollback_error
                raise

        self.logger.info(
            "key_added",
            key_id=key.id,
            owner_id=owner_id,
            name=name,
            fingerprint=key.fingerprint,
        )
        return key

    async def get_key(self, key_id: int) -> PublicKey:
        return await self.registry.get_by_id(key_id)

    async def list_keys(self, owner_id: int) -> List[PublicKey]:
        return await self.registry.list_by_owner(owner_id)

    async def update_key(self, key_id: int, name: str) -> PublicKey:
        """Rename a key. Content and fingerprint never change."""
        key = await self.registry.get_by_id(key_id)
        if name == key.name:
            return key

        key.name = name
        if await self.registry.exists(key):
            raise DuplicateKeyError("name", name)

        updated = await self.registry.update(key)
        self.logger.info("key_updated", key_id=key_id, name=name)
        return updated

    async def delete_key(self, key_id: int) -> PublicKey:
        """Revoke a key: drop its authorized_keys line, then its registry row.

        The line goes first so a failure never leaves a deleted key with
        access. If the row cannot be deleted afterwards, the key stays
        registered without a line until the next rebuild.

        Raises:
            KeyNotFoundError: If the key does not exist
            AccessFileError: If authorized_keys could not be rewritten
        """
        async with self.authorized_keys.exclusive("remove"):
            key = await self.registry.get_by_id(key_id)

            try:
                removed = await asyncio.to_thread(self.authorized_keys.remove_line, key)
            except AccessFileError as e:
                self.logger.error("authorized_keys_remove_failed", key_id=key_id, error=e.message)
                raise

            try:
                await self.registry.delete(key)
            except Exception as e:
                self.logger.error(
                    "key_delete_failed",
                    key_id=key_id,
                    error=str(e),
                    repair="rebuild authorized_keys from the registry",
                )
                raise

        if not removed:
            self.logger.warning("authorized_keys_line_missing", key_id=key_id)

        self.logger.info("key_deleted", key_id=key_id, owner_id=key.owner_id)
        return key

    async def rebuild_authorized_keys(self) -> int:
        """Recompute authorized_keys from every registered key.

        The registry is read under the file lock, so an add that lands
        during the rebuild either is in the snapshot or appends after it.

        Returns:
            Number of lines written
        """
        async with self.authorized_keys.exclusive("rebuild"):
            keys = [key async for key in self.registry.iterate_all()]

            try:
                count = await asyncio.to_thread(self.authorized_keys.rewrite, keys)
            except AccessFileError as e:
                self.logger.error("authorized_keys_rebuild_failed", error=e.message)
                raise

        self.logger.info("authorized_keys_rebuild_complete", count=count)
        return count
