"""
Catalog of supported chat models and their token limits.
"""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ModelInfo:
    id: str
    label: str
    max_context_tokens: int
    max_completion_tokens: int  # hard ceiling for a single completion
    output_headroom_ratio: float  # fraction of the context reserved for the completion


MODELS: List[ModelInfo] = [
    ModelInfo("gpt-4o-mini", "GPT-4o mini", 128000, 16384, 0.1),
    ModelInfo("gpt-4o", "GPT-4o", 128000, 4096, 0.1),
    ModelInfo("gpt-4-turbo", "GPT-4 Turbo", 128000, 4096, 0.1),
    ModelInfo("gpt-3.5-turbo", "GPT-3.5 Turbo", 16000, 4096, 0.1),
]


def get_model_info(model_id: str) -> ModelInfo:
    """Look up a model, falling back to the first catalog entry for unknown ids."""
    for info in MODELS:
        if info.id == model_id:
            return info
    return MODELS[0]
