"""
Test suite for obligation groups
"""

import pytest
from datetime import date

from finance_core.errors import NotFoundError, ValidationError


def create_obligation(system, **overrides):
    kwargs = dict(user_id="alice", category="EXPENSE", amount="100", frequency="MONTHLY",
                  start_date=date(2025, 4, 1), title="Rent")
    kwargs.update(overrides)
    return system.obligation_manager.create_obligation(**kwargs)


class TestGroupManagement:
    """Test creating, ordering and deleting groups"""

    def test_create_appends_after_last_group(self, system):
        groups = system.group_manager
        home = groups.create_group("alice", " Home ")
        car = groups.create_group("alice", "Car")
        pinned = groups.create_group("alice", "Pinned", sort_order=10)
        after = groups.create_group("alice", "After")

        assert home.name == "Home"
        assert (home.sort_order, car.sort_order, pinned.sort_order, after.sort_order) == (0, 1, 10, 11)
        assert groups.create_group("bob", "Bills").sort_order == 0

    def test_name_is_required(self, system):
        with pytest.raises(ValidationError):
            system.group_manager.create_group("alice", "  ")

    def test_update_checks_owner(self, system):
        group = system.group_manager.create_group("alice", "Home")

        renamed = system.group_manager.update_group(group.id, "alice", name="House")
        assert renamed.name == "House"
        with pytest.raises(NotFoundError):
            system.group_manager.update_group(group.id, "bob", name="Mine")

    def test_reorder(self, system):
        groups = system.group_manager
        home = groups.create_group("alice", "Home")
        car = groups.create_group("alice", "Car")
        fun = groups.create_group("alice", "Fun")

        ordered = groups.reorder_groups("alice", [fun.id, home.id, car.id])
        assert [g.name for g in ordered] == ["Fun", "Home", "Car"]
        assert [g.sort_order for g in ordered] == [0, 1, 2]

    def test_reorder_rejects_foreign_or_unknown_ids(self, system):
        groups = system.group_manager
        home = groups.create_group("alice", "Home")
        car = groups.create_group("alice", "Car")
        foreign = groups.create_group("bob", "Bills")

        with pytest.raises(ValidationError):
            groups.reorder_groups("alice", [car.id, foreign.id])
        with pytest.raises(ValidationError):
            groups.reorder_groups("alice", [car.id, "missing"])
        with pytest.raises(ValidationError):
            groups.reorder_groups("alice", [car.id, car.id])
        assert [g.id for g in groups.list_groups("alice")] == [home.id, car.id]

    def test_delete_ungroups_obligations(self, system):
        group = system.group_manager.create_group("alice", "Home")
        rent = create_obligation(system, group_id=group.id)

        system.group_manager.delete_group(group.id, "alice")

        assert system.group_manager.list_groups("alice") == []
        assert system.obligation_manager.get_obligation(rent.id).group_id is None

    def test_list_with_obligations(self, system):
        home = system.group_manager.create_group("alice", "Home")
        empty = system.group_manager.create_group("alice", "Empty")
        create_obligation(system, group_id=home.id, title="Rent")
        create_obligation(system, title="Loose")

        listing = system.group_manager.list_with_obligations("alice")
        assert [item["group"].id for item in listing] == [home.id, empty.id]
        assert [o.title for o in listing[0]["obligations"]] == ["Rent"]
        assert listing[1]["obligations"] == []


class TestGroupMembership:
    """Obligations may only join groups their owner has"""

    def test_move_between_groups(self, system):
        home = system.group_manager.create_group("alice", "Home")
        car = system.group_manager.create_group("alice", "Car")
        rent = create_obligation(system, group_id=home.id)

        moved = system.group_manager.move_obligation(rent.id, "alice", car.id)
        assert moved.group_id == car.id
        assert system.obligation_manager.list_obligations("alice", group_id=home.id) == []

        ungrouped = system.group_manager.move_obligation(rent.id, "alice", None)
        assert ungrouped.group_id is None

    def test_move_to_invalid_group(self, system):
        foreign = system.group_manager.create_group("bob", "Bills")
        rent = create_obligation(system)

        with pytest.raises(ValidationError):
            system.group_manager.move_obligation(rent.id, "alice", foreign.id)
        with pytest.raises(ValidationError):
            system.group_manager.move_obligation(rent.id, "alice", "missing")
        with pytest.raises(NotFoundError):
            system.group_manager.move_obligation(rent.id, "bob", None)

    def test_create_and_update_validate_group(self, system):
        foreign = system.group_manager.create_group("bob", "Bills")
        with pytest.raises(ValidationError):
            create_obligation(system, group_id=foreign.id)

        rent = create_obligation(system)
        with pytest.raises(ValidationError):
            system.obligation_manager.update_obligation(rent.id, "alice", group_id="missing")

        home = system.group_manager.create_group("alice", "Home")
        updated = system.obligation_manager.update_obligation(rent.id, "alice", group_id=home.id)
        assert updated.group_id == home.id
