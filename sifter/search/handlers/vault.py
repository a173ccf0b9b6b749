"""
Vault Handler - File and full-text search scoped to a notes vault.

    :ob  invoice    file names under the vault containing "invoice"
    :obg invoice    lines under the vault containing "invoice"

The vault is the `[vault] path` setting. Both commands are ordinary
shell templates run through the debounced command backend; the vault
directory is quoted into the template and the typed text is bound to $1.
Results open through the notes app's URI scheme.
"""

import shlex
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from loguru import logger

from sifter.errors import ConfigurationError
from sifter.search.router import VaultResult
from sifter.utils.helpers import open_uri

VAULT_COMMANDS = {
    "ob": "find {vault} -type f -iname \"*$1*\"",
    "obg": "rg --with-filename --line-number --no-heading --color=never -- \"$1\" {vault}",
}


class VaultHandler:
    """Builds vault-scoped templates and opens what they find."""

    name = "vault"

    def __init__(self, vault_path: Optional[Path] = None):
        self.vault_path = vault_path

    def handles(self, command_name: str) -> bool:
        return command_name in VAULT_COMMANDS

    def validated_vault(self) -> Path:
        """
        The configured vault directory.

        Raises:
            ConfigurationError: No vault configured, or it does not exist
        """
        if self.vault_path is None:
            raise ConfigurationError("Vault not configured - edit settings")
        if not Path(self.vault_path).is_dir():
            raise ConfigurationError(f"Vault path does not exist: {self.vault_path}")
        return Path(self.vault_path)

    def template(self, command_name: str) -> str:
        """Shell template for a vault command, with the vault path filled in."""
        vault = self.validated_vault()
        return VAULT_COMMANDS[command_name].format(vault=shlex.quote(str(vault)))

    def wrap(self, line: str) -> VaultResult:
        return VaultResult.from_vault_line(line, str(self.vault_path or ""))

    @staticmethod
    def uri_for(result: VaultResult) -> str:
        path = result.path or result.raw_line
        uri = f"obsidian://open?path={quote(path, safe='')}"
        if result.line_number is not None:
            uri += f"&line={result.line_number}"
        return uri

    def open_result(self, result: VaultResult) -> bool:
        uri = self.uri_for(result)
        logger.debug(f"Opening vault note {uri}")
        return open_uri(uri)
