"""Resolve a raw parameter string into per-stage parameter maps.

Accepted input forms:

* empty -- every stage runs with its own defaults;
* a JSON object of objects -- ``{"Stage name": {"key": "value"}}``, used
  verbatim with no default merge;
* a flat ``key=value`` list separated by ``,`` or ``;`` -- applied on top of
  every stage's defaults.

Malformed input never fails a run: the resolver falls back to defaults and
reports the parse error on the result.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field

from feed_engine.exceptions import ParameterParseError

logger = logging.getLogger(__name__)

_PAIR_SEPARATOR = re.compile(r"[,;]")

ParameterSource = Literal["defaults", "json", "pairs"]


class ResolvedParameters(BaseModel):
    """Outcome of resolving one raw parameter string."""

    per_stage: dict[str, dict[str, str]] = Field(default_factory=dict)
    source: ParameterSource = "defaults"
    error: str | None = Field(
        default=None,
        description="Parse failure that caused a fallback to defaults.",
    )

    def params_for(self, stage_name: str) -> dict[str, str]:
        """Return a copy of the map for *stage_name* (empty when absent)."""
        return dict(self.per_stage.get(stage_name, {}))


def parse_json_parameters(raw: str) -> dict[str, dict[str, str]]:
    """Parse a JSON object mapping stage names to objects of values.

    Raises
    ------
    ParameterParseError
        If *raw* is not valid JSON or not an object of objects.
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParameterParseError(f"Invalid JSON parameters: {exc}") from exc

    if not isinstance(payload, dict):
        raise ParameterParseError("JSON parameters must be an object keyed by stage name")

    per_stage: dict[str, dict[str, str]] = {}
    for stage_name, values in payload.items():
        if not isinstance(values, dict):
            raise ParameterParseError(f"Parameters for stage '{stage_name}' must be an object")
        per_stage[str(stage_name)] = {str(k): _as_text(v) for k, v in values.items()}
    return per_stage


def parse_pair_parameters(raw: str) -> dict[str, str]:
    """Parse ``k=v`` pairs separated by ``,`` or ``;``.

    Pieces without exactly one ``=``, or with an empty key or value, are
    ignored, so ``retryCount=`` leaves the stage default in place.
    """
    overrides: dict[str, str] = {}
    for piece in _PAIR_SEPARATOR.split(raw):
        parts = piece.split("=")
        if len(parts) != 2:
            continue
        key, value = parts[0].strip(), parts[1].strip()
        if key and value:
            overrides[key] = value
    return overrides


def _as_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class ParameterResolver:
    """Turns caller input into a parameter map per stage.

    Parameters
    ----------
    defaults:
        Mapping of stage name to that stage's static default parameters.
        The mappings are copied on every resolution and never modified.
    """

    def __init__(self, defaults: Mapping[str, Mapping[str, str]]) -> None:
        self._defaults = defaults

    @property
    def stage_names(self) -> list[str]:
        return list(self._defaults)

    def defaults(self) -> dict[str, dict[str, str]]:
        """Fresh copies of every stage's defaults."""
        return {name: dict(values) for name, values in self._defaults.items()}

    def resolve(self, raw: str | None) -> ResolvedParameters:
        """Resolve *raw* into per-stage maps.  Never raises."""
        if raw is None or not raw.strip():
            return ResolvedParameters(per_stage=self.defaults(), source="defaults")

        text = raw.strip()
        try:
            if text.startswith("{"):
                return ResolvedParameters(per_stage=parse_json_parameters(text), source="json")

            overrides = parse_pair_parameters(text)
            per_stage = self.defaults()
            for values in per_stage.values():
                values.update(overrides)
            return ResolvedParameters(per_stage=per_stage, source="pairs")
        except ParameterParseError as exc:
            logger.warning("Failed to parse parameters, using defaults: %s", exc)
            return ResolvedParameters(per_stage=self.defaults(), source="defaults", error=str(exc))
