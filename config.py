# config.py
#
# Description: Centralized configuration for the compliance chat relay. It
#              uses Pydantic to load settings from a .env file or environment
#              variables, so the server, the browser UI and the terminal
#              client all share a single, consistent configuration.
#

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations  # enable postponed evaluation of annotations
from pydantic import Field, SecretStr  # to define configuration fields
from pydantic_settings import BaseSettings # for loading settings from env

# --------------------------------------------------------------------------- #
# settings
# --------------------------------------------------------------------------- #
class AppConfig(BaseSettings):
    """
    Load all application settings from environment variables or defaults.
    Variable names match the ones the deployment already exports
    (OPENAI_API_KEY, OPENAI_MODEL, PORT, ...), so no prefix is used.

    Returns:
        AppConfig: A populated and validated settings instance.
    """

    # --- Upstream Completion Provider ---
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Credential sent to the completion provider. Never logged."
    )
    openai_model: str = Field(
        default="gpt-4-turbo-preview",
        description="Model identifier used for chat completions."
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible REST API."
    )

    # --- Generation Defaults ---
    max_tokens: int = Field(
        default=1000,
        gt=0,
        description="Hard cap on generated tokens per reply."
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature sent with every request."
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout in seconds for upstream and backend HTTP calls."
    )

    # --- Conversation ---
    history_cap: int = Field(
        default=20,
        ge=0,
        description="Maximum number of turns kept in a conversation history."
    )

    # --- Backend Server ---
    host: str = Field(
        default="0.0.0.0",
        description="Interface the API server binds to."
    )
    port: int = Field(
        default=3001,
        description="Port the API server listens on."
    )

    # --- Clients ---
    chat_api_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the backend API used by the UI clients."
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level."
    )

    # pydantic v2 style configuration
    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

# --------------------------------------------------------------------------- #
# global instance
# --------------------------------------------------------------------------- #
# Create a single, cached instance of the configuration that can be
# imported by any other module in the application.
settings = AppConfig()
