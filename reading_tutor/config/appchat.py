"""
Settings of the tutoring conversation: the messages shown to the
reader when a turn cannot be completed normally, and the parameters
that shape prompts and citations.

Settings are read from appchat.toml, if present, and may be
overridden by environment variables with the READTUTOR_ prefix.
"""

import logging
from pathlib import Path
from tomllib import TOMLDecodeError
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    PydanticBaseSettingsSource,
    TomlConfigSettingsSource,
)

from .config import ENV_PREFIX, export_settings

CHAT_CONFIG_FILE: str = "appchat.toml"

_logger = logging.getLogger(__name__)


class ChatSettings(BaseSettings):

    model_config = SettingsConfigDict(
        toml_file=CHAT_CONFIG_FILE,
        env_prefix=ENV_PREFIX,  # Uppercase for environment variables
        frozen=True,
        validate_assignment=True,
        extra='forbid',  # Prevent unexpected fields
    )

    # messages
    MSG_GENERATION_ERROR: str = Field(
        default="Sorry, something went wrong while preparing this "
        "answer. Please try again."
    )
    MSG_INVALID_OUTPUT: str = Field(
        default="Sorry, I could not put this answer into the "
        "requested format. Please try again or ask for a plain "
        "explanation."
    )
    MSG_NO_DOCUMENTS: str = Field(
        default="(no passages were retrieved from your documents)"
    )
    MSG_END_OF_TURN: str = Field(
        default="Happy reading! Come back whenever you have a "
        "question about your documents."
    )
    MSG_LONG_QUERY: str = Field(
        default="Your message is too long. Please ask a shorter "
        "question."
    )
    MSG_INVOCATION_FAILED: str = Field(default="Invocation failed")
    MSG_MISSING_RESPONSE: str = Field(default="No finalResponse")

    # conversation window passed to the generation prompts
    history_length: int = Field(
        default=4,
        ge=0,
        description="Number of previous messages included in the "
        "generation prompts",
    )
    rewrite_history_length: int = Field(
        default=6,
        ge=1,
        description="Number of previous messages given to the query "
        "rewriter",
    )

    # citations
    excerpt_length: int = Field(
        default=300,
        gt=20,
        description="Maximum length of the excerpt of a source",
    )
    summary_excerpt_length: int = Field(
        default=200,
        gt=20,
        description="Length of the summary shown as excerpt of a "
        "document in study plans",
    )

    max_query_word_count: int = Field(
        default=250,
        gt=0,
        description="Maximum length of the reader's message",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources to include TOML file."""
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls),
            env_settings,
        )

    def __init__(self, **data: Any) -> None:
        """
        Initialize ChatSettings with file existence verification.
        Logs a message if the file does not exist.
        """
        config_path = Path(CHAT_CONFIG_FILE)
        if not config_path.exists():
            _logger.debug(
                f"Configuration file not found: {config_path.absolute()}"
                ", using a default configuration object."
            )
        super().__init__(**data)


def create_default_config_file(
    file_path: str | Path | None = None,
) -> None:
    """Create a default settings file.

    Args:
        file_path: config file (defaults to appchat.toml)

    Example:
        ```python
        from reading_tutor.config.appchat import create_default_config_file
        create_default_config_file()
        ```
    """
    if file_path is None:
        file_path = CHAT_CONFIG_FILE

    file_path = Path(file_path)
    if file_path.exists():
        file_path.unlink()

    export_settings(ChatSettings(), file_path)


def load_settings(
    *,
    file_name: str | Path | None = None,
    logger: logging.Logger = _logger,
) -> ChatSettings | None:
    """Load and return a ChatSettings object from the specified file.

    Args:
        file_name: Path to settings file (defaults to appchat.toml)
        logger: logger to use to report errors

    Returns:
        ChatSettings: The loaded settings object, or None if the
        file could not be read or validated.
    """
    if file_name is None:
        file_name = CHAT_CONFIG_FILE

    file_path = Path(file_name)
    if not file_path.exists():
        logger.error(f"Configuration file not found: {file_path}")
        return None

    try:

        class TempChatSettings(ChatSettings):
            model_config = SettingsConfigDict(
                toml_file=str(file_path),
                env_prefix=ENV_PREFIX,
                frozen=True,
                validate_assignment=True,
                extra='forbid',
            )

        return TempChatSettings()

    except TOMLDecodeError as e:
        logger.error(f"Invalid toml in {file_path}:\n{e}")
        return None
    except ValidationError as e:
        logger.error(f"Invalid settings:\n{e}")
        return None
