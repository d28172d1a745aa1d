"""Provider-neutral access to hosted and local LLM backends."""

from .config import LoadedConfig, ProviderDef, load_config, resolve_provider_config
from .errors import (
    ArgumentParseError,
    ConfigValidationError,
    ProviderError,
    StreamDecodeWarning,
    UnknownProviderError,
    UpstreamError,
)
from .generator import LoggingContentGenerator, create_content_generator
from .providers import (
    BaseProvider,
    ProviderRegistry,
    ProviderType,
    create_provider,
    has_provider,
    list_providers,
    register_provider,
)
from .types import (
    Content,
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    FunctionCall,
    FunctionDeclaration,
    FunctionResponse,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    ProviderConfig,
)

__version__ = "0.1.0"

__all__ = [
    "ArgumentParseError",
    "BaseProvider",
    "ConfigValidationError",
    "Content",
    "CountTokensRequest",
    "CountTokensResponse",
    "EmbedContentRequest",
    "EmbedContentResponse",
    "FunctionCall",
    "FunctionDeclaration",
    "FunctionResponse",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "LoadedConfig",
    "LoggingContentGenerator",
    "ProviderConfig",
    "ProviderDef",
    "ProviderError",
    "ProviderRegistry",
    "ProviderType",
    "StreamDecodeWarning",
    "UnknownProviderError",
    "UpstreamError",
    "create_content_generator",
    "create_provider",
    "has_provider",
    "list_providers",
    "load_config",
    "register_provider",
    "resolve_provider_config",
]
