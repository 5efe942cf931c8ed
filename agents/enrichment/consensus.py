"""
Dual-model consensus validation.

The same prompt goes to two independently configured models. Both answers
must parse as JSON objects; the objects are then merged field by field:

  - both strings: keep the longer one (ties go to model A)
  - both lists: order-preserving union without duplicates
  - only one side has a non-null value: take it
  - anything else: take model A's value

Picking the longer string is an approximation of "more detailed", not a
correctness check. Callers that need real agreement on specific fields pass
``agreement_fields``; any mismatch there marks the result as not validated
while still returning the merge for manual review.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from agents.enrichment.ai_client import AIClient
from agents.enrichment.json_extraction import extract_json

logger = logging.getLogger(__name__)


@dataclass
class ConsensusResult:
    validated: bool
    merged: Optional[dict]
    model_a_output: str
    model_b_output: str
    disagreements: list[str] = field(default_factory=list)


def _union(a: list, b: list) -> list:
    merged: list = []
    for item in list(a) + list(b):
        if item not in merged:
            merged.append(item)
    return merged


def merge_outputs(a: dict, b: dict) -> dict:
    """Field-wise merge of two parsed model outputs."""
    merged: dict = {}
    for key in list(a.keys()) + [k for k in b.keys() if k not in a]:
        va, vb = a.get(key), b.get(key)
        if va is None or vb is None:
            merged[key] = vb if va is None else va
        elif isinstance(va, str) and isinstance(vb, str):
            merged[key] = vb if len(vb) > len(va) else va
        elif isinstance(va, list) and isinstance(vb, list):
            merged[key] = _union(va, vb)
        else:
            merged[key] = va
    return merged


def _normalize_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().casefold()


def _normalize(value: Any) -> Any:
    return _normalize_text(value) if isinstance(value, str) else value


def values_agree(va: Any, vb: Any) -> bool:
    if va is None or vb is None:
        return va is None and vb is None
    if isinstance(va, str) and isinstance(vb, str):
        return _normalize_text(va) == _normalize_text(vb)
    if isinstance(va, list) and isinstance(vb, list):
        if not va and not vb:
            return True
        nb = [_normalize(v) for v in vb]
        return any(_normalize(v) in nb for v in va)
    return va == vb


class ConsensusValidator:
    """Runs one prompt through two models and reconciles the answers."""

    def __init__(
        self,
        ai: AIClient,
        model_a: Optional[str] = None,
        model_b: Optional[str] = None,
        agreement_fields: Iterable[str] = (),
    ):
        self.ai = ai
        self.model_a = model_a or ai.config.model_for("consensus_a")
        self.model_b = model_b or ai.config.model_for("consensus_b")
        self.agreement_fields = tuple(agreement_fields)

    def validate(self, prompt: str, system_prompt: str) -> ConsensusResult:
        raw_a = self.ai.invoke(system_prompt, prompt, self.model_a)
        raw_b = self.ai.invoke(system_prompt, prompt, self.model_b)

        parsed_a, parsed_b = extract_json(raw_a), extract_json(raw_b)
        if not isinstance(parsed_a, dict) or not isinstance(parsed_b, dict):
            logger.info(
                "Consensus rejected: %s parsed=%s, %s parsed=%s",
                self.model_a, isinstance(parsed_a, dict),
                self.model_b, isinstance(parsed_b, dict),
            )
            return ConsensusResult(False, None, raw_a, raw_b)

        merged = merge_outputs(parsed_a, parsed_b)
        disagreements = [
            name for name in self.agreement_fields
            if not values_agree(parsed_a.get(name), parsed_b.get(name))
        ]
        if disagreements:
            logger.info("Consensus disagreement on %s", ", ".join(disagreements))

        return ConsensusResult(
            validated=not disagreements,
            merged=merged,
            model_a_output=raw_a,
            model_b_output=raw_b,
            disagreements=disagreements,
        )
