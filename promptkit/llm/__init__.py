"""Chat completion senders for promptkit."""
from .base import ChatMessage, LLMResponse, LLMSender
from .azure_openai import AzureOpenAISender

__all__ = [
    'ChatMessage', 'LLMResponse', 'LLMSender',
    'AzureOpenAISender',
]
