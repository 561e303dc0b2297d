"""Reconciliation plan: the ordered, immutable list of actions for one run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterator


class ActionKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    MERGE = "merge"
    UNCHANGED = "unchanged"
    SKIP_DRIFTED = "skip_drifted"
    DELETE = "delete"
    SKIP_BLOCKED = "skip_blocked"


class ActionCategory(StrEnum):
    DIRECTORY = "directory"
    OWNED = "owned"
    MANAGED = "managed"
    DEPRECATED = "deprecated"


WRITE_KINDS = frozenset({ActionKind.CREATE, ActionKind.UPDATE, ActionKind.MERGE})
MUTATING_KINDS = WRITE_KINDS | {ActionKind.DELETE}
SKIP_KINDS = frozenset({ActionKind.SKIP_DRIFTED, ActionKind.SKIP_BLOCKED})

# Execution order: directories, owned writes, managed merges, deletions,
# then removal of emptied directories.
_CATEGORY_ORDER = {
    ActionCategory.DIRECTORY: 0,
    ActionCategory.OWNED: 1,
    ActionCategory.MANAGED: 2,
    ActionCategory.DEPRECATED: 3,
}
_DIRECTORY_REMOVAL = 4


@dataclass(frozen=True)
class Action:
    """One planned step for one path.

    ``content`` is set for write actions. ``expected_hash`` is what the
    path must hash to once the action ran (``None`` for a deletion), and
    what the fingerprint manifest records for it. ``routine`` marks a skip
    that recurs on every run by construction, such as an existing
    create-once file; ``check`` does not count it as drift.
    ``keep_parent`` is the nearest declared directory above a deleted path;
    cleanup of emptied parents stops there.
    """

    kind: ActionKind
    path: str
    category: ActionCategory
    detail: str = ""
    content: bytes | None = None
    expected_hash: str | None = None
    executable: bool = False
    routine: bool = False
    keep_parent: str | None = None

    @property
    def mutates(self) -> bool:
        return self.kind in MUTATING_KINDS

    @property
    def writes(self) -> bool:
        """True for actions that write file content."""
        return self.kind in WRITE_KINDS and self.category is not ActionCategory.DIRECTORY

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": str(self.kind),
            "path": self.path,
            "category": str(self.category),
            "detail": self.detail,
        }


def _sort_key(action: Action) -> tuple[int, int, str]:
    # Deletions run deepest first so files go before the directories holding them.
    depth = -action.path.count("/")
    if action.category is ActionCategory.DIRECTORY and action.kind is ActionKind.DELETE:
        return (_DIRECTORY_REMOVAL, depth, action.path)
    if action.category is not ActionCategory.DEPRECATED:
        depth = 0
    return (_CATEGORY_ORDER[action.category], depth, action.path)


@dataclass(frozen=True)
class ReconciliationPlan:
    """Actions for one invocation, in execution order."""

    schema_version: str
    actions: tuple[Action, ...] = ()

    @classmethod
    def build(cls, schema_version: str, actions: list[Action]) -> ReconciliationPlan:
        return cls(schema_version=schema_version, actions=tuple(sorted(actions, key=_sort_key)))

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    @property
    def mutating(self) -> tuple[Action, ...]:
        return tuple(a for a in self.actions if a.mutates)

    @property
    def has_changes(self) -> bool:
        return any(a.mutates for a in self.actions)

    @property
    def has_skips(self) -> bool:
        """True when a path was skipped for a reason worth surfacing."""
        return any(a.kind in SKIP_KINDS and not a.routine for a in self.actions)

    def by_kind(self, kind: ActionKind) -> tuple[Action, ...]:
        return tuple(a for a in self.actions if a.kind is kind)

    def counts(self) -> Counter[ActionKind]:
        return Counter(a.kind for a in self.actions)

    def get(self, path: str) -> Action | None:
        for action in self.actions:
            if action.path == path:
                return action
        return None
