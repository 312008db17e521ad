"""Pydantic models describing the live configuration document.

Scalar fields are strict: a port given as the string "3000" is a
violation, not something to coerce. Keys use the camelCase names found in
``config.json``; unknown keys and sections are allowed and left untouched.

Conditional provider requirements (which nested fields a provider needs) are
not expressed here; see validator.PROVIDER_REQUIRED_FIELDS.
"""

from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

NodeEnv = Literal["development", "production", "test"]
ProviderName = Literal["claude", "lmstudio", "cloudflare"]

NODE_ENVS: tuple[str, ...] = ("development", "production", "test")
PROVIDER_NAMES: tuple[str, ...] = ("claude", "lmstudio", "cloudflare")

DEFAULT_SCHEMA_VERSION = "1.0.0"


class _Section(BaseModel):
    """Common model configuration for document sections."""

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
    )


class ServerConfig(_Section):
    """Service runtime settings."""

    port: StrictInt = Field(..., ge=1, le=65535)
    node_env: NodeEnv
    cors_origin: StrictStr | None = Field(None, min_length=1)


class MikroTikConfig(_Section):
    """Managed router connection settings."""

    host: StrictStr = Field(..., min_length=1)
    port: StrictInt = Field(..., ge=1, le=65535)
    username: StrictStr | None = None
    password: StrictStr | None = None
    timeout: StrictInt | None = Field(None, ge=1000, le=60000)
    keepalive_interval: StrictInt | None = Field(None, ge=5000, le=300000)


class ClaudeConfig(_Section):
    """Anthropic provider sub-section."""

    api_key: StrictStr | None = None
    model: StrictStr | None = None


class LmStudioConfig(_Section):
    """LM Studio provider sub-section."""

    endpoint: StrictStr | None = None
    model: StrictStr | None = None
    context_window: StrictInt | None = Field(None, ge=1024)

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str | None) -> str | None:
        if value and not value.startswith(("http://", "https://")):
            raise PydanticCustomError(
                "url_scheme",
                "Must be a valid http(s) URL or empty string",
            )
        return value


class CloudflareConfig(_Section):
    """Cloudflare Workers AI provider sub-section."""

    account_id: StrictStr | None = None
    api_token: StrictStr | None = None
    model: StrictStr | None = None
    gateway: StrictStr | None = None


class LLMConfig(_Section):
    """Language-model provider selection and provider-specific settings."""

    provider: ProviderName
    claude: ClaudeConfig | None = None
    lmstudio: LmStudioConfig | None = None
    cloudflare: CloudflareConfig | None = None


class AssistantConfig(_Section):
    """Assistant generation parameters."""

    temperature: StrictFloat | None = Field(None, ge=0, le=2)
    max_tokens: StrictInt | None = Field(None, ge=100, le=100000)
    system_prompt: StrictStr | None = None


class ConfigDocument(_Section):
    """The live configuration document as a whole."""

    version: StrictStr = Field(..., min_length=1)
    server: ServerConfig
    mikrotik: MikroTikConfig
    llm: LLMConfig
    assistant: AssistantConfig | None = None
