from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping


class Category(str, Enum):
    """Report categories tracked by the progress model."""

    OVERVIEW = "overview"
    METADATA = "metadata"
    DISCOVERABILITY = "discoverability"
    RESOURCES = "resources"
    NETWORKING = "networking"
    DNS = "dns"
    CERTIFICATE = "certificate"
    HISTORY = "history"
    DATA_FEEDS = "dataFeeds"
    HOST_METADATA = "hostMetadata"


# Liveness marker: work has begun but nothing is final yet.
STARTED = 0.1


@dataclass(frozen=True)
class ProgressState:
    """Immutable snapshot: one completion fraction in [0, 1] per category."""

    fractions: Mapping[Category, float]

    @classmethod
    def filled(cls, value: float) -> "ProgressState":
        return cls(MappingProxyType({c: value for c in Category}))

    def __getitem__(self, category: Category) -> float:
        return self.fractions[Category(category)]

    @property
    def overall(self) -> float:
        return sum(self.fractions.values()) / len(self.fractions)

    @property
    def is_complete(self) -> bool:
        return all(v >= 1.0 for v in self.fractions.values())

    def as_dict(self) -> dict[str, float]:
        return {c.value: v for c, v in self.fractions.items()}


class ProgressTracker:
    """
    Per-request progress state.

    - starts at zero for every category
    - values only move forward within a request
    - once frozen (request failed or was cancelled) updates are ignored
    - the listener receives a snapshot after every effective change
    """

    def __init__(self, listener: Callable[[ProgressState], None] | None = None):
        self._listener = listener
        self._values = {c: 0.0 for c in Category}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self) -> ProgressState:
        return ProgressState(MappingProxyType(dict(self._values)))

    def start(self) -> None:
        self._set_many({c: STARTED for c in Category})

    def complete_all(self) -> None:
        self._set_many({c: 1.0 for c in Category})

    def update(self, category: Category, value: float) -> None:
        self._set_many({Category(category): value})

    def complete(self, *categories: Category) -> None:
        self._set_many({Category(c): 1.0 for c in categories})

    def freeze(self) -> None:
        self._frozen = True

    def _set_many(self, changes: dict) -> None:
        if self._frozen:
            return
        changed = False
        for category, value in changes.items():
            value = min(1.0, max(0.0, float(value)))
            if value > self._values[category]:
                self._values[category] = value
                changed = True
        if changed and self._listener is not None:
            self._listener(self.snapshot())
