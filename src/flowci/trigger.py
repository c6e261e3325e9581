# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import DefinitionError


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG_PUSH = "tag_push"


@dataclass(frozen=True)
class Event:
    """What the triggering system hands us: (event kind, ref)."""
    kind: EventKind
    ref: str

    @classmethod
    def from_ref(cls, kind: str | EventKind, ref: str) -> "Event":
        """
        Build an event, normalising a push of a tag ref to `tag_push`.

        Raises DefinitionError for unknown kinds so the CLI can report it.
        """
        try:
            k = EventKind(kind)
        except ValueError as e:
            known = [k.value for k in EventKind]
            raise DefinitionError(f"Unknown event kind {kind!r}. Known kinds: {known}") from e
        if k is EventKind.PUSH and ref.startswith("refs/tags/"):
            k = EventKind.TAG_PUSH
        return cls(kind=k, ref=ref)

    @property
    def event_name(self) -> str:
        # a tag push is reported as "push", the same way the hosting side names it
        return EventKind.PUSH.value if self.kind is EventKind.TAG_PUSH else self.kind.value


@dataclass(frozen=True)
class TriggerFilter:
    """Optional ref filters for one event kind. Empty means "any ref"."""
    branches: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()

    def matches(self, ref: str) -> bool:
        if not self.branches and not self.tags:
            return True
        if ref.startswith("refs/heads/"):
            name = ref[len("refs/heads/"):]
            return any(fnmatch(name, p) for p in self.branches)
        if ref.startswith("refs/tags/"):
            name = ref[len("refs/tags/"):]
            return any(fnmatch(name, p) for p in self.tags)
        # pull request refs and bare refs: only branch filters apply
        return any(fnmatch(ref, p) for p in self.branches)


@dataclass(frozen=True)
class Triggers:
    """Run-level trigger: which event kinds create a run at all."""
    on: Tuple[Tuple[str, TriggerFilter], ...]

    @classmethod
    def of(cls, spec: Any) -> "Triggers":
        """
        Accepts the shapes a document may use for `on:`:
          - "push"
          - ["push", "pull_request"]
          - {"push": {"branches": [...], "tags": [...]}, "pull_request": None}
        """
        if spec is None:
            return DEFAULT_TRIGGERS
        if isinstance(spec, str):
            spec = [spec]
        if isinstance(spec, (list, tuple)):
            spec = {k: None for k in spec}
        if not isinstance(spec, dict):
            raise DefinitionError(f"'on' must be a string, list or mapping, got {type(spec).__name__}")

        out = []
        for kind, filt in spec.items():
            if kind not in (EventKind.PUSH.value, EventKind.PULL_REQUEST.value):
                raise DefinitionError(
                    f"Unsupported trigger {kind!r}. Supported: push, pull_request"
                )
            out.append((kind, _filter_of(kind, filt)))
        return cls(tuple(out))

    @property
    def kinds(self) -> list[str]:
        return [k for k, _ in self.on]

    def filter_for(self, kind: str) -> Optional[TriggerFilter]:
        for k, f in self.on:
            if k == kind:
                return f
        return None


def _filter_of(kind: str, filt: Optional[Dict[str, Any]]) -> TriggerFilter:
    if filt is None:
        return TriggerFilter()
    if not isinstance(filt, dict):
        raise DefinitionError(f"Trigger filter for {kind!r} must be a mapping")
    unknown = set(filt) - {"branches", "tags"}
    if unknown:
        raise DefinitionError(f"Unknown trigger filter keys for {kind!r}: {sorted(unknown)}")
    return TriggerFilter(
        branches=_str_tuple(filt.get("branches")),
        tags=_str_tuple(filt.get("tags")),
    )


def _str_tuple(values: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values)


DEFAULT_TRIGGERS = Triggers(
    on=(
        (EventKind.PUSH.value, TriggerFilter()),
        (EventKind.PULL_REQUEST.value, TriggerFilter()),
    )
)


def should_run(triggers: Triggers, event: Event) -> bool:
    """Decide whether a run is created at all for this event."""
    filt = triggers.filter_for(event.event_name)
    if filt is None:
        return False
    return filt.matches(event.ref)
