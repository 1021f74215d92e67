"""Stream session transport layer.

The controller reaches the generation service only through a Transport.
"""

from stream_session.providers.base import Transport
from stream_session.providers.litellm_provider import LiteLLMTransport
from stream_session.providers.registry import load_controller_config, load_models
from stream_session.providers.scripted import ScriptedAttempt, ScriptedTransport

__all__ = [
    "LiteLLMTransport",
    "ScriptedAttempt",
    "ScriptedTransport",
    "Transport",
    "load_controller_config",
    "load_models",
]
