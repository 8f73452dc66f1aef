from .anthropic import AnthropicClient
from .base import LLMProvider
from .minimax import MinimaxClient
from .mistral import MistralClient
from .openai import OpenAIClient
from .zai import ZAIClient

__all__ = [
    "LLMProvider",
    "OpenAIClient",
    "AnthropicClient",
    "MistralClient",
    "ZAIClient",
    "MinimaxClient",
]
