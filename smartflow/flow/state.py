"""Session state container.

Holds the value map, the enrichment context and the dynamic field cache.
Every write goes through one method per store:
- value map: set_value / update_values
- enrichment context: merge_enrichment
- dynamic field cache: store_generated (write-once per step)

Readers get read-only views. Listeners are notified synchronously after
each write with the name of the store that changed, and must re-read
state at that moment rather than holding on to earlier views' contents.
"""

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from ..core.models import GeneratedField, GeneratedFields, TemplateSpec

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]

VALUES = "values"
ENRICHMENT = "enrichment"
DYNAMIC = "dynamic"


class FlowState:
    def __init__(self, template: TemplateSpec):
        self.template = template
        self._values: dict[str, Any] = {}
        self._enrichment: dict[str, Any] = {}
        # Launch sequence of the enrichment run that last wrote each key
        self._enrichment_versions: dict[str, int] = {}
        self._generated: dict[str, list[GeneratedField]] = {}
        self._jurisdictions: dict[str, str] = {}
        self.errors: dict[str, str] = {}
        # Unknown prompt variables already reported for this session
        self.warned_variables: set[str] = set()
        self._listeners: list[Listener] = []

    # ── Reads ──

    @property
    def values(self) -> Mapping[str, Any]:
        return MappingProxyType(self._values)

    @property
    def enrichment(self) -> Mapping[str, Any]:
        return MappingProxyType(self._enrichment)

    @property
    def generated(self) -> Mapping[str, list[GeneratedField]]:
        return MappingProxyType(self._generated)

    def generated_fields(self, step_id: str) -> list[GeneratedField] | None:
        return self._generated.get(step_id)

    def jurisdiction_name(self, step_id: str) -> str | None:
        return self._jurisdictions.get(step_id)

    # ── Writes ──

    def set_value(self, name: str, value: Any) -> None:
        """The single writer path for the value map."""
        self._values[name] = value
        self.errors.pop(name, None)
        self._notify(VALUES)

    def update_values(self, updates: Mapping[str, Any]) -> None:
        """Apply several values in order, notifying once."""
        if not updates:
            return
        for name, value in updates.items():
            self._values[name] = value
            self.errors.pop(name, None)
        self._notify(VALUES)

    def merge_enrichment(self, result: Mapping[str, Any], sequence: int) -> list[str]:
        """Shallow-merge an enrichment result, newest launch wins per key.

        A key already written by a run launched after ``sequence`` is kept,
        so a slow early run can't clobber a faster later one.

        Returns:
            Keys that were written
        """
        written: list[str] = []
        for key, value in result.items():
            if self._enrichment_versions.get(key, -1) > sequence:
                logger.debug(f"Skipping stale enrichment key {key!r} (run {sequence})")
                continue
            self._enrichment[key] = value
            self._enrichment_versions[key] = sequence
            written.append(key)
        if written:
            self._notify(ENRICHMENT)
        return written

    def store_generated(self, step_id: str, generated: GeneratedFields) -> bool:
        """Cache a step's generated fields. Returns False if already cached."""
        if step_id in self._generated:
            return False
        self._generated[step_id] = list(generated.fields)
        if generated.jurisdiction_name:
            self._jurisdictions[step_id] = generated.jurisdiction_name
        self._notify(DYNAMIC)
        return True

    # ── Observation ──

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, kind: str) -> None:
        for listener in list(self._listeners):
            listener(kind)
