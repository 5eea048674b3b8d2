"""
Outbound protocols: the streaming completion endpoint and the events webhook.
"""
from aidedecamp.backends.openai_stream import CompletionStreamClient
from aidedecamp.backends.retry_wrapper import RetryingStreamClient, stream_turn_with_retry
from aidedecamp.backends.webhook import WebhookGateway

__all__ = [
    "CompletionStreamClient",
    "RetryingStreamClient",
    "stream_turn_with_retry",
    "WebhookGateway",
]
