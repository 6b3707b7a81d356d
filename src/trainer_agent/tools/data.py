"""
Data retrieval tool for pulling additional context mid-turn.
"""

from typing import Any

from pydantic import BaseModel, Field

from ..llm.base import ToolDefinition
from ..models import EventType
from .base import BaseTool, FetchDataOutput, ToolContext


class FetchDataInput(BaseModel):
    sources: list[str] = Field(min_length=1, description="Data source names to fetch")
    params: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Optional per-source parameters, e.g. {\"workout_history\": {\"limit\": 5}}",
    )


class FetchDataTool(BaseTool):
    name = "fetch_data"
    description = (
        "Fetch additional data sources into context. Use when you need information "
        "not currently available."
    )
    input_model = FetchDataInput
    status_start = "Gathering your info..."
    status_done = "Context ready"

    def __init__(self, source_names: list[str] | None = None):
        self.source_names = list(source_names or [])

    @property
    def parameters(self) -> dict[str, Any]:
        schema = super().parameters
        if self.source_names:
            schema["properties"]["sources"]["items"] = {"type": "string", "enum": self.source_names}
        return schema

    def to_definition(self) -> ToolDefinition:
        definition = super().to_definition()
        if self.source_names:
            definition.description = f"{self.description} Available sources: {', '.join(self.source_names)}."
        return definition

    async def execute(self, args: FetchDataInput, context: ToolContext) -> FetchDataOutput:
        names = list(dict.fromkeys(args.sources))
        results = await context.data_sources.fetch_many(names, context.user_id, args.params)

        output = FetchDataOutput()
        for result in results:
            if not result.ok:
                output.failed[result.source] = result.error
                continue
            await context.store.append_event(
                context.session_id,
                EventType.KNOWLEDGE,
                {"source": result.source, "formatted_text": result.formatted},
            )
            output.sources.append(result.source)
        return output

    def format_result(self, output: FetchDataOutput) -> str:
        text = f"Fetched {len(output.sources)} data sources: {', '.join(output.sources) or 'none'}"
        if output.failed:
            text += "; failed: " + ", ".join(f"{name} ({error})" for name, error in output.failed.items())
        return text
