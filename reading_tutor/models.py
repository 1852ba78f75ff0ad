"""
Creation of the language models and embeddings from the
configuration settings.

Models are specified as 'provider/model' strings. The provider is
passed on to LangChain's model factories, so that any provider with
an installed LangChain integration may be used (the OpenAI
integration is installed by default):

```python
from reading_tutor.config.config import ConfigSettings
from reading_tutor.models import create_model_from_settings

llm = create_model_from_settings(ConfigSettings().major)
```
"""

from langchain.chat_models import init_chat_model
from langchain.embeddings import init_embeddings
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel

from .config.config import (
    ConfigSettings,
    EmbeddingSettings,
    LanguageModelSettings,
)


def create_model_from_settings(
    settings: LanguageModelSettings,
) -> BaseChatModel:
    """Create a chat model from a LanguageModelSettings object.

    Args:
        settings: the model specification

    Returns:
        a LangChain chat model
    """
    provider, _, model = settings.model.partition("/")
    return init_chat_model(
        model,
        model_provider=provider,
        temperature=settings.temperature,
        max_retries=settings.max_retries,
        timeout=settings.timeout,
    )


def create_embeddings_from_settings(
    settings: EmbeddingSettings | None = None,
) -> Embeddings:
    """Create an embeddings object. Reads config.toml if no settings
    are given."""
    if settings is None:
        settings = ConfigSettings().embeddings

    provider, _, model = settings.model.partition("/")
    return init_embeddings(model, provider=provider)
