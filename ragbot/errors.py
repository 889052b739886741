"""
Error taxonomy shared by every ragbot component.

Callers catch the narrow classes; the base classes mix in the matching builtin
so code that only knows about ValueError/RuntimeError keeps working.
"""

from __future__ import annotations


class RagbotError(Exception):
    """Base class for all ragbot errors."""


class InvalidArgumentError(RagbotError, ValueError):
    """Empty prompt, query or content, negative counts and similar misuse."""


class LifecycleError(RagbotError, RuntimeError):
    """A component was used before start() or after stop()."""


class NotSupportedError(RagbotError, NotImplementedError):
    """The backend does not implement an optional capability."""


class FormatError(RagbotError, ValueError):
    """Structured data could not be decoded."""


class ContextFormatError(FormatError):
    """Persisted context data is malformed."""


class ResponseFormatError(FormatError):
    """A model response did not match the requested structure."""


class ProviderError(RagbotError, RuntimeError):
    """Operational failure while talking to a model or knowledge backend."""


class TransportError(ProviderError):
    """Network or HTTP failure."""


class CompletionTimeoutError(TransportError):
    """The model did not answer in time."""


class PromptTooLongError(ProviderError):
    """Prompt exceeds the client's configured maximum length."""

    def __init__(self, estimated_tokens: int, max_tokens: int):
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"Prompt is too long: ~{estimated_tokens} tokens, limit is {max_tokens}"
        )


class AgentConfigError(RuntimeError):
    """Raised when the agent configuration cannot be loaded or validated."""
