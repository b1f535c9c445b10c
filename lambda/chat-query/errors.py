"""
Exception types for the chat-query Lambda.

Client input problems map to 4xx responses close to where they are detected.
Everything else propagates to the single boundary in handler.handler and is
returned as a 500 with the exception message in "details".
"""


class ChatQueryError(Exception):
    """Base class for all chat-query failures."""

    status_code = 500


class ConfigurationError(ChatQueryError):
    """Missing or malformed settings or secrets."""


class StoreConnectionError(ChatQueryError):
    """The document store could not be reached."""


class StoreQueryError(ChatQueryError):
    """The document store failed while running a query."""


class MalformedRequestError(ChatQueryError):
    """The request body is not usable."""

    status_code = 400

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.details = details


class LanguageModelError(ChatQueryError):
    """The language model provider call failed."""


class ModelOutputParseError(ChatQueryError):
    """The model replied with text that is not the expected JSON."""


class PlanParseError(ModelOutputParseError):
    """The query-plan reply could not be turned into a QueryPlan."""


class InsightsParseError(ModelOutputParseError):
    """The insights reply could not be turned into an InsightsReport."""


class UnsafeQueryError(ChatQueryError):
    """The generated query uses an operator that is never executed."""
