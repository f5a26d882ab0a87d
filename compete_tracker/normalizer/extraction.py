"""Ordered strategies for pulling a canonical payload out of agent output.

Agents answer in many shapes: the canonical object itself, a JSON string,
markdown with a fenced ```json block, prose with an object embedded in it,
or any of those wrapped under ``answer``/``output``/``result``/... keys.
Each shape is handled by one strategy; ``PayloadExtractor`` runs them in
order and the first hit wins.
"""

import json
import re
from typing import Any, Optional, Sequence

from loguru import logger

WRAPPER_FIELDS = ("answer", "output", "text", "result", "data", "response")

MAX_DEPTH = 4

_FENCED_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


def _loads_object(text: str) -> Optional[dict]:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class ExtractionStrategy:
    """One way of locating the payload inside a raw agent response."""

    name = "base"

    def extract(self, value: Any, extractor: "PayloadExtractor", depth: int) -> Optional[dict]:
        raise NotImplementedError


class CanonicalShape(ExtractionStrategy):
    """Value already is the payload: a dict carrying the canonical key."""

    name = "canonical"

    def extract(self, value, extractor, depth):
        if extractor.is_canonical(value):
            return value
        return None


class FencedJsonBlock(ExtractionStrategy):
    """Markdown fenced code block holding a JSON object."""

    name = "fenced_block"

    def extract(self, value, extractor, depth):
        if not isinstance(value, str):
            return None

        for match in _FENCED_RE.finditer(value):
            parsed = _loads_object(match.group(1).strip())
            if parsed is None:
                continue
            found = extractor.resolve(parsed, depth + 1)
            if found is not None:
                return found
        return None


class BraceBlock(ExtractionStrategy):
    """``{...}`` substrings of a string that parse as JSON.

    The span from the first ``{`` to the last ``}`` is tried first. Failing
    that, every object a raw decoder can read is tried, largest first, so a
    bulky scratch object ahead of the real answer does not hide it.
    """

    name = "brace_block"

    def extract(self, value, extractor, depth):
        if not isinstance(value, str):
            return None

        start = value.find("{")
        end = value.rfind("}")
        if start == -1 or end <= start:
            return None

        parsed = _loads_object(value[start:end + 1])
        if parsed is not None:
            found = extractor.resolve(parsed, depth + 1)
            if found is not None:
                return found

        for candidate in self._objects_by_size(value):
            found = extractor.resolve(candidate, depth + 1)
            if found is not None:
                return found
        return None

    @staticmethod
    def _objects_by_size(text: str) -> list:
        decoder = json.JSONDecoder()
        found = []
        index = text.find("{")
        while index != -1:
            try:
                candidate, end = decoder.raw_decode(text, index)
            except ValueError:
                candidate, end = None, index
            if isinstance(candidate, dict):
                found.append((end - index, index, candidate))
            index = text.find("{", index + 1)

        # Largest first; among equal sizes the later object wins
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [candidate for _, _, candidate in found]


class WrapperFields(ExtractionStrategy):
    """Payload nested under one of the usual wrapper keys."""

    name = "wrapper_fields"

    def __init__(self, fields: Sequence[str] = WRAPPER_FIELDS):
        self.fields = tuple(fields)

    def extract(self, value, extractor, depth):
        if not isinstance(value, dict):
            return None

        for field in self.fields:
            if field not in value:
                continue
            found = extractor.resolve(value[field], depth + 1)
            if found is not None:
                logger.debug(f"Agent payload found under '{field}'")
                return found
        return None


DEFAULT_STRATEGIES = (CanonicalShape(), FencedJsonBlock(), BraceBlock(), WrapperFields())


class PayloadExtractor:
    """Run extraction strategies in order until one yields a canonical payload.

    Args:
        canonical_key: Key whose presence marks the canonical shape
            (``steps`` for funnel runs, ``metrics`` for entity metrics)
        canonical_type: Expected type of the value under ``canonical_key``
        strategies: Ordered strategies; defaults to canonical, fenced
            block, brace block, wrapper fields
    """

    def __init__(
        self,
        canonical_key: str,
        canonical_type: type = list,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
    ):
        self.canonical_key = canonical_key
        self.canonical_type = canonical_type
        self.strategies = tuple(strategies or DEFAULT_STRATEGIES)

    def is_canonical(self, value: Any) -> bool:
        return isinstance(value, dict) and isinstance(
            value.get(self.canonical_key), self.canonical_type
        )

    def extract(self, raw: Any) -> Optional[dict]:
        """Return the canonical payload inside ``raw``, or None. Never raises."""
        try:
            return self.resolve(raw, 0)
        except RecursionError:
            logger.warning("Agent payload nested too deeply to extract")
            return None

    def resolve(self, value: Any, depth: int) -> Optional[dict]:
        if value is None or depth > MAX_DEPTH:
            return None

        for strategy in self.strategies:
            found = strategy.extract(value, self, depth)
            if found is not None:
                if depth == 0:
                    logger.debug(f"Agent payload extracted via {strategy.name}")
                return found
        return None
