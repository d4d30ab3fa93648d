"""
Configuration settings for the application.

Values are merged from these sources, highest priority first:

1. keyword arguments (tests, command-line overrides)
2. Azure Key Vault, when ``AZURE_KEYVAULT_URI`` (or ``KeyVault:Uri``) is configured
3. environment variables
4. a ``.env`` file
5. ``appsettings.json`` in the working directory
"""

import logging
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Sequence,
    Tuple,
    Type,
)

from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from entrachat.common import (
    AnsiColors,
    colored_print,
)

logger = logging.getLogger(__name__)

# appsettings.json section/key -> setting name
SECTION_KEYS: Dict[Tuple[str, str], str] = {
    ("AzureAD", "TenantId"): "AZURE_TENANT_ID",
    ("AzureAD", "ClientId"): "AZURE_CLIENT_ID",
    ("AzureAD", "ClientSecret"): "AZURE_CLIENT_SECRET",
    ("AzureOpenAI", "Endpoint"): "AZURE_OPENAI_ENDPOINT",
    ("AzureOpenAI", "ApiKey"): "AZURE_OPENAI_API_KEY",
    ("AzureOpenAI", "DeploymentName"): "AZURE_OPENAI_DEPLOYMENT_NAME",
    ("AzureOpenAI", "ApiVersion"): "AZURE_OPENAI_API_VERSION",
    ("OpenAI", "ApiKey"): "OPENAI_API_KEY",
    ("OpenAI", "Model"): "OPENAI_MODEL",
    ("McpServer", "Endpoint"): "MCP_SERVER_URL",
    ("McpServer", "Transport"): "MCP_TRANSPORT",
    ("McpServer", "Timeout"): "MCP_TIMEOUT",
    ("McpServer", "AccessToken"): "MCP_ACCESS_TOKEN",
    ("KeyVault", "Uri"): "AZURE_KEYVAULT_URI",
}

# Key Vault secret names use "--" where appsettings.json nests, e.g. "AzureAD--ClientSecret"
SECRET_SEPARATOR = "--"


class ConfigurationError(RuntimeError):
    """Raised when a required setting has no value."""


def flatten_sections(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map ``{"AzureAD": {"TenantId": ...}}`` style sections onto flat setting names.

    Top-level keys that already are setting names pass through; unknown keys are kept and later
    ignored by the settings model.
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            for inner_key, inner_value in value.items():
                name = SECTION_KEYS.get((key, inner_key))
                if name is not None:
                    flat[name] = inner_value
        else:
            flat[key] = value
    return flat


class AppSettingsJsonSource(JsonConfigSettingsSource):
    """``appsettings.json`` reader that understands the sectioned layout."""

    def _read_file(self, file_path: Path) -> Dict[str, Any]:  # type: ignore[override]
        return flatten_sections(super()._read_file(file_path))


def make_secret_client(vault_uri: str) -> Any:
    """Key Vault client authenticated with the ambient Azure credential."""
    # pylint: disable=import-outside-toplevel
    from azure.identity import DefaultAzureCredential
    from azure.keyvault.secrets import SecretClient

    credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)
    return SecretClient(vault_url=vault_uri, credential=credential)


class KeyVaultSettingsSource(PydanticBaseSettingsSource):
    """
    Overlay secrets from Azure Key Vault on top of the local configuration.

    The vault URI is looked up in the lower-priority sources.  Any failure to reach the vault
    (missing SDK, no credential, network) is reported and the local configuration is used as is.
    """

    def __init__(
        self,
        settings_cls: Type[BaseSettings],
        lookup: Sequence[Callable[[], Dict[str, Any]]],
    ) -> None:
        super().__init__(settings_cls)
        self._lookup = lookup

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        # Values are produced in bulk by __call__
        return None, field_name, False

    def _vault_uri(self) -> str | None:
        for source in self._lookup:
            uri = source().get("AZURE_KEYVAULT_URI")
            if uri:
                return str(uri)
        return None

    def __call__(self) -> Dict[str, Any]:
        vault_uri = self._vault_uri()
        if not vault_uri:
            return {}

        print(f"Loading secrets from Key Vault: {vault_uri}")
        try:
            client = make_secret_client(vault_uri)
            values: Dict[str, Any] = {}
            for props in client.list_properties_of_secrets():
                if props.enabled is False:
                    continue
                name = self._setting_name(props.name)
                if name is not None:
                    values[name] = client.get_secret(props.name).value
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Key Vault %s unavailable", vault_uri, exc_info=True)
            colored_print(f"⚠ Could not access Key Vault: {exc}", AnsiColors.YELLOW)
            colored_print("  Falling back to local configuration...\n", AnsiColors.YELLOW)
            return {}

        colored_print("✓ Secrets loaded from Key Vault\n", AnsiColors.GREEN)
        logger.info("Loaded %d setting(s) from Key Vault", len(values))
        return values

    def _setting_name(self, secret_name: str) -> str | None:
        section, sep, key = secret_name.partition(SECRET_SEPARATOR)
        if sep:
            return SECTION_KEYS.get((section, key))
        candidate = secret_name.replace("-", "_").upper()
        return candidate if candidate in self.settings_cls.model_fields else None


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        json_file="appsettings.json",
        json_file_encoding="utf-8",
        extra="ignore",
    )

    DATA_DIR: str = "~/.entrachat"
    LOG_LEVEL: str = "warning"  # Options: debug, info, warning, error, critical

    # Entra ID app registration
    AZURE_TENANT_ID: str | None = None
    AZURE_CLIENT_ID: str | None = None
    AZURE_CLIENT_SECRET: str | None = None

    # Optional secret store
    AZURE_KEYVAULT_URI: str | None = None

    # LLM Configuration
    LLM_PROVIDER: str = "azure"  # Options: azure, openai
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_DEPLOYMENT_NAME: str = "gpt-4o"
    AZURE_OPENAI_API_VERSION: str = "2024-10-21"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"

    # MCP server
    MCP_SERVER_URL: str = "https://mcp.svc.cloud.microsoft/enterprise"
    MCP_TRANSPORT: str = "sse"  # Options: sse, streamable-http
    MCP_TIMEOUT: float = 30.0
    MCP_ACCESS_TOKEN: str | None = None  # Pre-issued bearer token, skips the sign-in flow

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        json_settings = AppSettingsJsonSource(settings_cls)
        key_vault = KeyVaultSettingsSource(
            settings_cls, lookup=(init_settings, env_settings, dotenv_settings, json_settings)
        )
        return (
            init_settings,
            key_vault,
            env_settings,
            dotenv_settings,
            json_settings,
            file_secret_settings,
        )

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR).expanduser()

    def missing_required(self) -> list[str]:
        """Display names of required settings that are not configured."""
        required: list[tuple[str, str | None]] = []
        if not self.MCP_ACCESS_TOKEN:
            required += [
                ("Azure Tenant ID", self.AZURE_TENANT_ID),
                ("Azure Client ID", self.AZURE_CLIENT_ID),
            ]
        if self.LLM_PROVIDER.lower() == "openai":
            required.append(("OpenAI API Key", self.OPENAI_API_KEY))
        else:
            required += [
                ("Azure OpenAI endpoint", self.AZURE_OPENAI_ENDPOINT),
                ("Azure OpenAI API Key", self.AZURE_OPENAI_API_KEY),
            ]
        return [name for name, value in required if not (value and value.strip())]

    def validate_required(self) -> None:
        """Raise :class:`ConfigurationError` for the first missing required setting."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"{missing[0]} not configured")


settings = Settings()
