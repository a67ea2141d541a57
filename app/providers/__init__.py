from .inline import InlineProvider, OpenAIInlineProvider
from .replicate_provider import AsyncProvider, ReplicateAsyncProvider, normalize_output

__all__ = [
    'InlineProvider',
    'OpenAIInlineProvider',
    'AsyncProvider',
    'ReplicateAsyncProvider',
    'normalize_output',
]
