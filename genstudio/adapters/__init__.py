"""Backend adapters for generation requests."""

from ..config import Settings
from .base import BaseAdapter
from .edge import EdgeFunctionAdapter
from .huggingface import HuggingFaceAdapter

__all__ = ["BaseAdapter", "EdgeFunctionAdapter", "HuggingFaceAdapter", "create_adapter"]


def create_adapter(settings: Settings) -> BaseAdapter:
    """Build the adapter selected by settings.backend."""
    if settings.backend == "huggingface":
        return HuggingFaceAdapter(settings)
    return EdgeFunctionAdapter(settings)
