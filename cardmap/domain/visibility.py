"""Group visibility state and the filter deciding which items are shown."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from cardmap.domain.models import Group, Item


@dataclass
class VisibilityState:
    """Visible group ids plus the global completed/template toggles."""

    visible_groups: Set[str] = field(default_factory=set)
    include_completed: bool = True
    include_templates: bool = True

    @classmethod
    def from_groups(cls, groups: Iterable[Group]) -> "VisibilityState":
        """Default state: every group flagged ``include_on_map`` is visible."""
        return cls(visible_groups={group.id for group in groups if group.include_on_map})

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> "VisibilityState":
        return cls(
            visible_groups=set(payload.get("visible_groups") or []),
            include_completed=payload.get("include_completed", True) is not False,
            include_templates=payload.get("include_templates", True) is not False,
        )

    def to_payload(self) -> Dict[str, object]:
        return {
            "visible_groups": sorted(self.visible_groups),
            "include_completed": self.include_completed,
            "include_templates": self.include_templates,
        }

    def set_group(self, group_id: str, visible: bool) -> None:
        if visible:
            self.visible_groups.add(group_id)
        else:
            self.visible_groups.discard(group_id)


def first_item_ids(items: Iterable[Item]) -> Set[str]:
    """Return the id of the lowest-positioned item in each list."""
    firsts: Dict[str, Item] = {}
    for item in items:
        current = firsts.get(item.list_id)
        if current is None or item.position < current.position:
            firsts[item.list_id] = item
    return {item.id for item in firsts.values()}


class VisibilityFilter:
    """Decides visibility from group membership and the current toggles."""

    def __init__(self, groups: List[Group], state: VisibilityState) -> None:
        self._groups = groups
        self._state = state
        self._first_ids: Set[str] = set()

    @property
    def state(self) -> VisibilityState:
        return self._state

    def group_for(self, item: Item) -> Optional[Group]:
        """Return the first group whose lists include the item's list."""
        return next((group for group in self._groups if group.contains(item)), None)

    def prepare(self, items: Iterable[Item]) -> None:
        """Refresh the first-item lookup used by ``ignore_first_item`` groups."""
        self._first_ids = first_item_ids(items)

    def is_visible(self, item: Item) -> bool:
        group = self.group_for(item)
        if group is None or group.id not in self._state.visible_groups:
            return False
        if not self._state.include_completed and item.is_completed:
            return False
        if not self._state.include_templates and item.is_template:
            return False
        if group.ignore_first_item and item.id in self._first_ids:
            return False
        return True

    def visible(self, items: Iterable[Item]) -> List[Item]:
        pool = list(items)
        self.prepare(pool)
        return [item for item in pool if self.is_visible(item)]
