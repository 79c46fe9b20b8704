"""
Visualization add-on: turns a completed answer into chart-ready data.

Stage 1 asks the model to extract structured data from the answer, stage 2
asks it for Plotly figure specifications over that data. Both results are
streamed to the client and stored on the assistant message.
"""

from typing import Any, Callable, Dict, Optional
import json
import logging

from ..config import settings
from ..errors import SubPipelineFailure, UpstreamFailure
from ..schemas.events import StatusEvent, StreamEvent, StructuredDataEvent, VizConfigEvent
from .llm_service import LLMService
from .message_store import MessageStore


logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "Extract any tabular or numeric data from the assistant answer below. "
    "Respond with a JSON object of the form "
    '{"has_data": bool, "title": str, "columns": [str], "rows": [[value, ...]]}. '
    'If the answer contains nothing worth charting, respond with {"has_data": false}.'
)

FIGURE_PROMPT = (
    "Given this dataset, design one or more Plotly charts that best present it. "
    'Respond with a JSON object {"figures": [{"data": [...], "layout": {...}}]} '
    "using valid Plotly trace and layout specifications."
)


def _parse_json_object(raw: str, stage: int) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SubPipelineFailure(f"Stage {stage} returned invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise SubPipelineFailure(f"Stage {stage} returned {type(parsed).__name__}, expected an object")
    return parsed


class VisualizationPipeline:
    """Two-stage structured data + chart configuration pipeline."""

    def __init__(
        self,
        llm_service: LLMService,
        store: MessageStore,
        model: Optional[str] = None
    ):
        self.llm_service = llm_service
        self.store = store
        self.model = model or settings.VISUALIZATION_MODEL

    async def run(
        self,
        message_id: str,
        user_message: str,
        answer: str,
        emit: Callable[[StreamEvent], None]
    ) -> None:
        """
        Run both stages for a completed assistant message.

        Raises:
            SubPipelineFailure: when a stage fails; the caller isolates it.
        """
        emit(StatusEvent(stage=1, status="running", message="Extracting structured data"))
        try:
            raw = await self.llm_service.complete(
                model=self.model,
                messages=[
                    {"role": "system", "content": EXTRACTION_PROMPT},
                    {"role": "user", "content": f"Question: {user_message}\n\nAnswer: {answer}"}
                ],
                max_tokens=2000,
                temperature=0,
                json_mode=True
            )
        except UpstreamFailure as e:
            raise SubPipelineFailure(f"Stage 1 failed: {e.message}") from e

        structured = _parse_json_object(raw, stage=1)
        if not structured.get("has_data"):
            emit(StatusEvent(stage=1, status="skipped", message="No chartable data"))
            return

        await self.store.update_message(message_id, structured_data=structured)
        emit(StructuredDataEvent(data=structured))
        emit(StatusEvent(stage=1, status="complete"))

        emit(StatusEvent(stage=2, status="running", message="Building chart configuration"))
        try:
            raw = await self.llm_service.complete(
                model=self.model,
                messages=[
                    {"role": "system", "content": FIGURE_PROMPT},
                    {"role": "user", "content": json.dumps(structured)}
                ],
                max_tokens=3000,
                temperature=0,
                json_mode=True
            )
        except UpstreamFailure as e:
            raise SubPipelineFailure(f"Stage 2 failed: {e.message}") from e

        config = _parse_json_object(raw, stage=2)
        if not isinstance(config.get("figures"), list):
            raise SubPipelineFailure("Stage 2 returned no figures")

        await self.store.update_message(message_id, visualization_config=config)
        emit(VizConfigEvent(data=config))
        emit(StatusEvent(stage=2, status="complete"))
