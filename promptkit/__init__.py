"""
promptkit - prompt templates, multi-step chains and conversations
over Azure OpenAI chat completions.
"""
from .constants import APP_NAME, APP_VERSION, APP_DESCRIPTION
from .errors import (
    PromptError,
    InvalidArgumentError,
    MissingVariablesError,
    EmptyChainError,
    MalformedDataError,
    SenderError,
    ChainCancelledError,
    ConfigurationError,
)
from .options import PromptOptions
from .template import PromptTemplate, find_variables, interpolate
from .chain import ChainStep, StepResult, ChainResult, PromptChain
from .llm import ChatMessage, LLMResponse, LLMSender, AzureOpenAISender
from .config import ClientConfig
from .client import get_response
from .guard import (
    OutputFormat,
    PromptAnalysis,
    analyze,
    calculate_quality_score,
    check_template,
    detect_injection,
    detect_injection_patterns,
    estimate_tokens,
    sanitize,
    truncate_to_token_limit,
    wrap_with_format,
)
from .budget import BudgetSummary, TokenBudget, TrimStrategy
from .conversation import Conversation
from .library import PromptEntry, PromptLibrary

__version__ = APP_VERSION
__all__ = [
    'APP_NAME', 'APP_VERSION', 'APP_DESCRIPTION',
    'PromptError', 'InvalidArgumentError', 'MissingVariablesError',
    'EmptyChainError', 'MalformedDataError', 'SenderError',
    'ChainCancelledError', 'ConfigurationError',
    'PromptOptions',
    'PromptTemplate', 'find_variables', 'interpolate',
    'ChainStep', 'StepResult', 'ChainResult', 'PromptChain',
    'ChatMessage', 'LLMResponse', 'LLMSender', 'AzureOpenAISender',
    'ClientConfig', 'get_response',
    'OutputFormat', 'PromptAnalysis', 'analyze', 'calculate_quality_score',
    'check_template', 'detect_injection', 'detect_injection_patterns',
    'estimate_tokens', 'sanitize', 'truncate_to_token_limit', 'wrap_with_format',
    'BudgetSummary', 'TokenBudget', 'TrimStrategy',
    'Conversation',
    'PromptEntry', 'PromptLibrary',
]
