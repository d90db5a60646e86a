"""CLI context management."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from rich.console import Console

from keyward.application.services.key_service import PublicKeyService
from keyward.core.config import Settings
from keyward.core.keys.inspector import KeyInspector
from keyward.infrastructure.ssh_keygen import SshKeygenInspector
from keyward.cli.utils.output import OutputFormatter

T = TypeVar("T")


@dataclass
class CLIContext:
    """Context object passed through CLI commands."""
    
    debug: bool
    settings: Settings
    formatter: OutputFormatter
    console: Console
    
    def build_inspector(self) -> KeyInspector:
        return SshKeygenInspector(
            self.settings.ssh_keygen_path,
            timeout=self.settings.oracle_timeout,
        )
    
    def build_service(self) -> PublicKeyService:
        """
        Get a key service wired from the CLI settings.
        
        Returns:
            PublicKeyService instance, not yet initialized
        """
        return PublicKeyService.from_settings(self.settings, inspector=self.build_inspector())
    
    def run(self, operation: Callable[[PublicKeyService], Awaitable[T]]) -> T:
        """Run one async operation against an initialized key service."""
        async def runner() -> Any:
            async with self.build_service() as service:
                return await operation(service)
        
        return asyncio.run(runner())
