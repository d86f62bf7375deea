"""Settings via pydantic-settings with TOOLRELAY_ env prefix.

Vendor credentials and integration endpoints use validation_alias to read
the same unprefixed env vars the upstream services document
(ANTHROPIC_API_KEY, AWS_REGION, WEATHER_API_KEY, ...), so one .env file
drives everything.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TOOLRELAY_", env_file=".env", extra="ignore")

    log_level: str = "info"

    # Runtime
    host: str = "0.0.0.0"
    port: int = Field(3001, validation_alias="PORT")
    cli_enabled: bool = True
    server_enabled: bool = True

    # Direct Anthropic API
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    api_base_url: str = "https://api.anthropic.com"

    # Bedrock (used only when ANTHROPIC_API_KEY is absent)
    aws_access_key_id: str = Field("", validation_alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field("", validation_alias="AWS_SECRET_ACCESS_KEY")
    aws_region: str = Field("", validation_alias="AWS_REGION")
    bedrock_model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"

    # LLM
    model: str = "claude-3-5-sonnet-latest"
    max_tokens: int = 2048
    temperature: float = 0.95
    max_turns: int = 10  # Max tool dispatch rounds per turn

    # Timeouts (seconds)
    api_timeout_connect: int = 10
    api_timeout_read: int = 120
    tool_timeout: float = 120.0

    # Integrations
    truncation_limit: int = Field(19000, validation_alias="TRUNCATION_LIMIT")
    weather_api_key: str = Field("", validation_alias="WEATHER_API_KEY")
    weather_api_url: str = "http://api.weatherapi.com/v1"
    suno_api_url: str = "http://localhost:3000"
    acedata_api_key: str = Field("", validation_alias="ACEDATA_API_KEY")
    acedata_api_url: str = "https://api.acedata.cloud"
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    openai_api_url: str = "https://api.openai.com/v1"
    confluence_base_url: str = Field("", validation_alias="CONFLUENCE_BASE_URL")
    confluence_username: str = Field("", validation_alias="CONFLUENCE_USERNAME")
    confluence_api_key: str = Field("", validation_alias="CONFLUENCE_API_KEY")
    backstage_base_url: str = Field("", validation_alias="BACKSTAGE_BASE_URL")

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.truncation_limit < 4:
            raise ValueError("truncation_limit must be >= 4")
        return self

    @property
    def has_anthropic_credentials(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def has_bedrock_credentials(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key and self.aws_region)
