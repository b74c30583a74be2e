"""
Delay node executor.

A delay node does no work of its own: the scheduler stores it as
``scheduled`` with ``scheduled_at = now + duration`` and the delay sweep
claims it once that time has passed. The executor only confirms the wait
is over.

Accepted template bodies:
    {"seconds": 30}  {"minutes": 5}  {"hours": 1}  {"days": 2}   (summed)
    {"delay_ms": 60000}
    {"duration": "PT1H30M"}   ISO-8601 duration, also under "delay_duration"
"""

import re
from datetime import timedelta
from typing import Any, Dict

from core.exceptions import PermanentExecutionError, TransientExecutionError, ValidationError
from core.utils import ensure_utc
from tasks.base_task import ExecutionContext, NodeExecutor, NodeResult
from workflow.definition import NodeTemplate

ISO_DURATION_RE = re.compile(
    r"^P(?!$)"
    r"(?:(?P<weeks>\d+(?:\.\d+)?)W)?"
    r"(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?=\d)"
    r"(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?"
    r")?$"
)

UNIT_KEYS = ("weeks", "days", "hours", "minutes", "seconds")


def parse_iso_duration(value: str) -> timedelta:
    """Parse an ISO-8601 duration without years or months, e.g. 'PT1H30M'."""
    match = ISO_DURATION_RE.match(value.strip().upper())
    if not match:
        raise ValidationError(f"Invalid ISO-8601 duration '{value}'")
    parts = {k: float(v) for k, v in match.groupdict().items() if v is not None}
    return timedelta(**parts)


def parse_delay(body: Dict[str, Any]) -> timedelta:
    """Turn a delay node's template body into a non-negative timedelta."""
    if not isinstance(body, dict) or not body:
        raise ValidationError("Delay node requires a duration")

    duration_str = body.get("duration") or body.get("delay_duration")
    if duration_str is not None:
        if not isinstance(duration_str, str):
            raise ValidationError("Delay duration must be an ISO-8601 string")
        return parse_iso_duration(duration_str)

    if "delay_ms" in body:
        units = {"milliseconds": body["delay_ms"]}
    else:
        units = {k: body[k] for k in UNIT_KEYS if k in body}
    if not units:
        raise ValidationError(
            "Delay node requires one of seconds, minutes, hours, days, delay_ms or duration"
        )

    for key, value in units.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Delay '{key}' must be a number")
        if value < 0:
            raise ValidationError(f"Delay '{key}' must not be negative")
    return timedelta(**units)


class DelayExecutor(NodeExecutor):
    """Completes a delay once its scheduled time has been reached."""

    node_type = "delay"
    display_name = "Delay"

    async def execute(
        self,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        now = ensure_utc(context.now)
        if context.scheduled_at is not None and now < ensure_utc(context.scheduled_at):
            raise TransientExecutionError(
                "Delay invoked before its scheduled time",
                {"scheduled_at": context.scheduled_at.isoformat(), "now": now.isoformat()},
            )
        try:
            duration = parse_delay(node.template_body)
        except ValidationError as e:
            raise PermanentExecutionError(e.message) from e
        return NodeResult(
            output={
                "delayed_seconds": duration.total_seconds(),
                "resumed_at": now.isoformat(),
            },
        )
