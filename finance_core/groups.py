"""
Obligation Group Module

User-defined, ordered groups for organizing obligations (for example
"Home" or "Subscriptions"). Groups only organize: they never change what
or when an obligation posts.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import uuid

from .errors import NotFoundError, ValidationError
from .logging_config import log_action
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)

OBLIGATION_GROUPS_TABLE = "obligation_groups"


@dataclass
class ObligationGroup(StorageRecord):
    """Named, ordered bucket of obligations"""
    user_id: str
    name: str
    sort_order: int = 0


def _clean_name(name: Optional[str]) -> str:
    if not name or not str(name).strip():
        raise ValidationError("Group name is required")
    return str(name).strip()


class GroupManager:
    """
    Create, order and delete obligation groups and move obligations between them
    """

    def __init__(self, storage: StorageInterface, obligation_manager):
        self.storage = storage
        self.obligation_manager = obligation_manager
        self.groups_table = OBLIGATION_GROUPS_TABLE

    def get_group(self, group_id: str, user_id: Optional[str] = None) -> ObligationGroup:
        data = self.storage.load(self.groups_table, group_id)
        if not data or (user_id is not None and data.get('user_id') != user_id):
            raise NotFoundError(f"Group {group_id} not found")
        return ObligationGroup.from_dict(data)

    def list_groups(self, user_id: str) -> List[ObligationGroup]:
        groups = [ObligationGroup.from_dict(data) for data in self.storage.find(self.groups_table, {"user_id": user_id})]
        return sorted(groups, key=lambda g: (g.sort_order, g.created_at))

    def list_with_obligations(self, user_id: str) -> List[Dict[str, Any]]:
        """Groups in display order, each with its obligations"""
        return [
            {"group": group, "obligations": self.obligation_manager.list_obligations(user_id, group_id=group.id)}
            for group in self.list_groups(user_id)
        ]

    def create_group(self, user_id: str, name: str, sort_order: Optional[int] = None) -> ObligationGroup:
        """
        Create a group

        Without ``sort_order`` the group goes after the user's last one.
        """
        name = _clean_name(name)
        if sort_order is None:
            existing = self.list_groups(user_id)
            sort_order = existing[-1].sort_order + 1 if existing else 0

        now = utc_now()
        group = ObligationGroup(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            name=name,
            sort_order=sort_order
        )
        self._save_group(group)

        log_action(logger, "info", f"Created group {name}", user_id=user_id,
                   action="group.create", resource=f"group:{group.id}")
        return group

    def update_group(self, group_id: str, user_id: Optional[str] = None, name: Optional[str] = None,
                     sort_order: Optional[int] = None) -> ObligationGroup:
        group = self.get_group(group_id, user_id)
        if name is not None:
            group.name = _clean_name(name)
        if sort_order is not None:
            group.sort_order = sort_order
        group.updated_at = utc_now()
        self._save_group(group)
        return group

    def delete_group(self, group_id: str, user_id: Optional[str] = None) -> None:
        """Delete a group; its obligations stay, ungrouped"""
        with self.storage.atomic():
            group = self.get_group(group_id, user_id)
            for obligation in self.obligation_manager.list_obligations(group.user_id, group_id=group.id):
                obligation.group_id = None
                obligation.updated_at = utc_now()
                self.obligation_manager.save_obligation(obligation)
            self.storage.delete(self.groups_table, group_id)

        log_action(logger, "info", f"Deleted group {group.name}", user_id=group.user_id,
                   action="group.delete", resource=f"group:{group_id}")

    def reorder_groups(self, user_id: str, group_ids: List[str]) -> List[ObligationGroup]:
        """
        Set the display order to the order of ``group_ids``

        Every id must be one of the user's groups; nothing changes otherwise.
        """
        if len(set(group_ids)) != len(group_ids):
            raise ValidationError("Group ids must not repeat")

        with self.storage.atomic():
            owned = {group.id: group for group in self.list_groups(user_id)}
            invalid = [group_id for group_id in group_ids if group_id not in owned]
            if invalid:
                raise ValidationError(f"Invalid group ids: {', '.join(invalid)}")

            now = utc_now()
            for index, group_id in enumerate(group_ids):
                group = owned[group_id]
                group.sort_order = index
                group.updated_at = now
                self._save_group(group)

        return self.list_groups(user_id)

    def move_obligation(self, obligation_id: str, user_id: Optional[str], group_id: Optional[str]):
        """Put an obligation in a group, or take it out of any with ``group_id=None``"""
        obligation = self.obligation_manager.get_obligation(obligation_id, user_id)
        if group_id is not None:
            try:
                self.get_group(group_id, obligation.user_id)
            except NotFoundError:
                raise ValidationError(f"Invalid group_id: {group_id}")

        obligation.group_id = group_id
        obligation.updated_at = utc_now()
        self.obligation_manager.save_obligation(obligation)

        log_action(logger, "info", "Moved obligation", user_id=obligation.user_id,
                   action="obligation.move", resource=f"obligation:{obligation.id}",
                   extra={"group_id": group_id})
        return obligation

    def _save_group(self, group: ObligationGroup) -> None:
        self.storage.save(self.groups_table, group.id, group.to_dict())
