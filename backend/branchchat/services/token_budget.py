"""
Token budgeting for prompt assembly.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import json
import math


Tokenizer = Callable[[str], int]


@dataclass
class PromptBudget:
    """Result of fitting a history into a model's context window."""
    messages: List[Dict[str, str]] = field(default_factory=list)
    prompt_tokens: int = 0
    max_completion_tokens: int = 0


def count_tokens(model: str, text: str, tokenizer: Optional[Tokenizer] = None) -> int:
    """
    Approximate the token cost of `text` for `model`.

    Uses roughly four characters per token unless a precise tokenizer is
    supplied. The estimate is deterministic and monotonic in length.
    """
    if tokenizer is not None:
        return tokenizer(text)
    return math.ceil(len(text) / 4)


def _message_cost(model: str, message: Dict[str, str], tokenizer: Optional[Tokenizer]) -> int:
    return count_tokens(model, json.dumps(message), tokenizer)


def build_prompt(
    model: str,
    system_prompt: str,
    history: List[Dict[str, str]],
    max_context_tokens: int,
    output_headroom_ratio: float,
    tokenizer: Optional[Tokenizer] = None
) -> PromptBudget:
    """
    Select the largest suffix of `history` that fits the prompt budget.

    The system message always comes first, even when it alone exceeds the
    budget. History is walked newest to oldest and the walk stops at the
    first message that does not fit; the selection keeps chronological order.

    Returns:
        PromptBudget whose `max_completion_tokens` is the reserved headroom.
        Callers still clamp it to the model's completion ceiling.
    """
    headroom = math.floor(max_context_tokens * output_headroom_ratio)
    target = max_context_tokens - headroom

    system_message = {"role": "system", "content": system_prompt}
    token_sum = _message_cost(model, system_message, tokenizer)

    selected: List[Dict[str, str]] = []
    for message in reversed(history):
        cost = _message_cost(model, message, tokenizer)
        if token_sum + cost > target:
            break
        selected.insert(0, message)
        token_sum += cost

    return PromptBudget(
        messages=[system_message] + selected,
        prompt_tokens=token_sum,
        max_completion_tokens=headroom
    )
