"""
Location tool: switch which of the user's locations (and its equipment) is
current.
"""

from typing import Any

import structlog
from pydantic import BaseModel, Field, model_validator

from .base import BaseTool, LocationOutput, ToolContext

logger = structlog.get_logger()


class SetCurrentLocationInput(BaseModel):
    location_id: str | None = Field(default=None, description="Id of the location to switch to (preferred)")
    location_name: str | None = Field(
        default=None,
        description="Name of the location, matched case-insensitively, if the id is not known",
    )

    @model_validator(mode="after")
    def require_target(self) -> "SetCurrentLocationInput":
        if not self.location_id and not self.location_name:
            raise ValueError("either location_id or location_name is required")
        return self


def _equipment_summary(location: dict[str, Any]) -> str:
    equipment = location.get("equipment") or []
    if not equipment:
        return "no equipment"
    return ", ".join(item if isinstance(item, str) else item.get("name", "equipment") for item in equipment)


def _resolve(locations: list[dict[str, Any]], args: SetCurrentLocationInput) -> dict[str, Any]:
    if args.location_id:
        for location in locations:
            if location.get("id") == args.location_id:
                return location
        raise LookupError(f"Location not found: {args.location_id}")

    wanted = args.location_name.strip().lower()
    matches = [loc for loc in locations if str(loc.get("name", "")).lower() == wanted]
    if not matches:
        raise LookupError(f'No location named "{args.location_name}"')
    if len(matches) > 1:
        listed = ", ".join(f"{loc.get('name')} ({loc.get('id')})" for loc in matches)
        raise LookupError(f"Multiple locations found: {listed}. Please use location_id")
    return matches[0]


class SetCurrentLocationTool(BaseTool):
    name = "set_current_location"
    description = (
        "Switch the user's current location. Use when the user says they are "
        "somewhere else (e.g. 'I'm at the gym'). The current location decides "
        "which equipment workouts can use."
    )
    input_model = SetCurrentLocationInput
    status_start = "Switching location..."
    status_done = "Location updated"

    async def execute(self, args: SetCurrentLocationInput, context: ToolContext) -> LocationOutput:
        locations = await context.user_data.get_locations(context.user_id)
        target = _resolve(locations, args)

        unchanged = bool(target.get("current"))
        if not unchanged:
            target = await context.user_data.set_current_location(context.user_id, target["id"])
            logger.info("Current location changed", user_id=context.user_id, location_id=target["id"])

        return LocationOutput(
            id=target["id"],
            name=target.get("name", ""),
            description=target.get("description"),
            equipment_count=len(target.get("equipment") or []),
            equipment_summary=_equipment_summary(target),
            unchanged=unchanged,
        )

    def format_result(self, output: LocationOutput) -> str:
        if output.unchanged:
            return f"Already at {output.name}"
        return (
            f"Switched to {output.name} "
            f"({output.equipment_count} equipment items: {output.equipment_summary})"
        )
