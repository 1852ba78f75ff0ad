"""
This module provides the configuration of the project, i.e. the
language models, the vector database holding the reader's documents,
and the retrieval cache.

The configuration options are the following:

    major: the language model used by the generation nodes
        (explain, quiz, code, plan, direct answer)
    minor: the language model used for routing decisions and query
        rewriting. These are short, structured calls that do not
        require a large model
    embeddings: the embedding model used to encode the retrieval
        query. It must be the same model used to index the chunks
    storage: one of
        ':memory:'
        LocalStorage(folder = "./storage")  (or another folder name)
        RemoteSource(url = "1.1.1.127", port = 21465)  (or others)
    database: the collection names of the document chunks and of
        the per-document summaries
    cache: the redis server caching retrieval results and query
        embeddings, and the time-to-live of the entries

Models are given in the form 'provider/model', for example
'openai/gpt-4o-mini'. The provider prefix is handed to LangChain's
model factory (see models.py).

Settings are read from config.toml, if present, and may be
overridden by environment variables with the READTUTOR_ prefix:

```python
from reading_tutor.config.config import ConfigSettings

settings = ConfigSettings()
print(settings.major.model)
```
"""

import logging
from pathlib import Path
from tomllib import TOMLDecodeError
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Module-level constants
DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "READTUTOR_"

_logger = logging.getLogger(__name__)


class LanguageModelSettings(BaseModel):
    """
    Specification of a chat model.

    Attributes:
        model: 'provider/model' string, e.g. 'openai/gpt-4o-mini'
        temperature: default sampling temperature. Generation nodes
            override it per pedagogical intent
        max_retries: retries on transient provider errors
        timeout: request timeout in seconds
    """

    model: str = Field(
        default="openai/gpt-4o-mini",
        min_length=3,
        description="Model in the form 'provider/model'",
    )
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_retries: int = Field(default=2, ge=0)
    timeout: float | None = Field(default=60.0, gt=0)

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('model')
    @classmethod
    def validate_model(cls, v: str) -> str:
        """The model must carry a provider prefix."""
        provider, sep, name = v.partition("/")
        if not sep or not provider or not name:
            raise ValueError(
                f"Invalid model '{v}': use the form 'provider/model'"
            )
        return v


class EmbeddingSettings(BaseModel):
    model: str = Field(
        default="openai/text-embedding-3-small",
        min_length=3,
        description="Embedding model in the form 'provider/model'",
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('model')
    @classmethod
    def validate_model(cls, v: str) -> str:
        provider, sep, name = v.partition("/")
        if not sep or not provider or not name:
            raise ValueError(
                f"Invalid embedding model '{v}': use the form "
                "'provider/model'"
            )
        return v


# In the qdrant implementation used here, the database may be located
# in local or in a remote storage. The following models help making
# sure that the specification is correct.
class LocalStorage(BaseModel):
    folder: str = Field(
        ..., min_length=1, description="Path to the vector database"
    )


class RemoteSource(BaseModel):
    url: HttpUrl = Field(..., description="URL of the remote source.")
    port: int = Field(
        ...,
        gt=0,
        lt=65536,
        description="Port number for the remote source (1-65535).",
    )


DatabaseSource = Literal[':memory:'] | LocalStorage | RemoteSource


# vector database settings. Location in storage field
class DatabaseSettings(BaseModel):

    chunks_collection: str = Field(
        default="chunks",
        min_length=1,
        description="The collection holding the embedded chunks of "
        + "the reader's documents. Each point carries the payload "
        + "keys user_id, article_id, collection_id, title, content "
        + "and domain.",
    )
    summaries_collection: str = Field(
        default="documents",
        min_length=1,
        description="The collection holding one record per document "
        + "with its summary. It is used to build a table of "
        + "contents when the learner asks for a study plan.",
    )


class CacheSettings(BaseModel):
    enabled: bool = Field(default=True)
    url: str = Field(
        default="redis://localhost:6379/0",
        min_length=1,
        description="Url of the redis server holding the cache",
    )
    ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="Lifetime of a cached retrieval result",
    )
    timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Connection and socket timeout of the redis client",
    )


class ConfigSettings(BaseSettings):
    """
    This object reads and writes to file the configuration options.

    Attributes:
        major: the generation model
        minor: the routing and rewrite model
        embeddings: the query embedding model
        storage: where the database is located
        database: collection names
        cache: retrieval cache settings
    """

    major: LanguageModelSettings = Field(
        default_factory=LanguageModelSettings,
        description="Model used to generate the learning payloads",
    )
    minor: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(temperature=0.0),
        description="Model used for routing and query rewriting",
    )
    embeddings: EmbeddingSettings = Field(
        default_factory=EmbeddingSettings,
        description="Model used to embed retrieval queries",
    )

    storage: DatabaseSource = Field(
        default=LocalStorage(folder="./storage"),
        description="Vector database local or remote source",
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Vector database settings",
    )

    cache: CacheSettings = Field(
        default_factory=CacheSettings,
        description="Retrieval cache settings",
    )

    model_config = SettingsConfigDict(
        toml_file=DEFAULT_CONFIG_FILE,
        env_prefix=ENV_PREFIX,  # Uppercase for environment variables
        env_nested_delimiter="__",
        frozen=True,
        validate_assignment=True,
        extra='forbid',  # Prevent unexpected fields
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
        """Customize the order of settings sources."""
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls),
            env_settings,
        )


def export_settings(
    settings: BaseSettings, file_path: str | Path | None = None
) -> None:
    """Write settings to a toml file.

    Args:
        settings: the settings object
        file_path: the file to write to (defaults to config.toml)

    Raises:
        OSError: If file cannot be written
    """
    import tomlkit

    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    data: dict[str, Any] = settings.model_dump(
        mode='json', exclude_none=True
    )
    Path(file_path).write_text(tomlkit.dumps(data), encoding="utf-8")


def create_default_config_file(
    file_path: str | Path | None = None,
) -> None:
    """Create a default settings file.

    Args:
        file_path: config file (defaults to config.toml)

    Raises:
        OSError: If file cannot be written

    Example:
        ```python
        # Creates config.toml in base folder with default values
        create_default_config_file()

        # Creates custom config file
        create_default_config_file(file_path="custom_config.toml")
        ```
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)

    if file_path.exists():
        # otherwise, it will be read in
        file_path.unlink()

    export_settings(ConfigSettings(), file_path)


def load_settings(
    *,
    file_name: str | Path | None = None,
    logger: logging.Logger = _logger,
) -> ConfigSettings | None:
    """Load and return a ConfigSettings object from the specified file.

    Args:
        file_name: Path to settings file (defaults to config.toml)
        logger: logger to use to report errors.

    Returns:
        ConfigSettings: The loaded configuration settings object, or
        None if the file could not be read or validated.

    Example:
        ```python
        settings = load_settings(file_name="my_config.toml")
        if settings is None:
            raise ValueError("Could not read my_config.toml")
        ```
    """
    if file_name is None:
        file_name = DEFAULT_CONFIG_FILE

    file_path = Path(file_name)

    if not file_path.exists():
        logger.error(f"Configuration file not found: {file_path}")
        return None

    try:
        # Create a temporary ConfigSettings class that uses the
        # specified file
        class TempConfigSettings(ConfigSettings):
            model_config = SettingsConfigDict(
                toml_file=str(file_path),
                env_prefix=ENV_PREFIX,
                env_nested_delimiter="__",
                frozen=True,
                validate_assignment=True,
                extra='forbid',
            )

        # Load and return the settings from the specified file
        return TempConfigSettings()

    except TOMLDecodeError:
        logger.error(
            "An invalid value was found in the config file "
            "(often, 'None').\nCheck that all values are numbers "
            "or strings."
        )
        return None
    except ValidationError as e:
        logger.error(f"Invalid settings:\n{e}")
        return None
    except Exception as e:
        logger.error(f"Could not load config settings:\n{e}")
        return None
