"""
Services package.
"""

from .llm_service import LLMService
from .message_store import MessageStore
from .stream_registry import StreamRegistry
from .generation_service import GenerationService
from .visualization_service import VisualizationPipeline

__all__ = ["LLMService", "MessageStore", "StreamRegistry", "GenerationService", "VisualizationPipeline"]
