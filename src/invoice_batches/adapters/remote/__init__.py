"""Remote batch service adapters."""

from ...config import RemoteConfig
from ...ports.batch_service import BatchServicePort
from .gemini import GeminiBatchAdapter

__all__ = ["GeminiBatchAdapter", "create_batch_adapter"]


def create_batch_adapter(config: RemoteConfig) -> BatchServicePort:
    """Create the remote adapter from configuration."""
    if not config.api_key:
        raise ValueError("Gemini API key is required")
    return GeminiBatchAdapter(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        timeout=config.timeout,
    )
