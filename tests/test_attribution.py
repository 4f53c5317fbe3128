"""Tests for per-user GPU memory attribution."""

from __future__ import annotations

from syswatch.monitoring.attribution import Attributor, ProcessUsage, sum_by_uid
from syswatch.monitoring.users import Account, UserDirectory

from conftest import UID_RANGE, FakeAccounts


def _usage(uid: int, used: int) -> ProcessUsage:
    return ProcessUsage(owning_uid=uid, used_memory_bytes=used)


class TestZeroUsage:
    def test_zero_byte_entries_never_appear(self, directory) -> None:
        result = Attributor(directory, show_unknown_users=True).attribute({
            0: [_usage(1000, 0), _usage(0, 0), _usage(4242, 0)],
            1: [_usage(1001, 0)],
        })
        assert result.aggregates == ()
        assert result.user_cards == {}

    def test_zero_byte_unknown_uid_does_not_refresh(self, directory, accounts) -> None:
        Attributor(directory).attribute({0: [_usage(4242, 0)]})
        assert accounts.calls == 1


class TestNameResolution:
    def test_known_user(self, directory) -> None:
        result = Attributor(directory).attribute({0: [_usage(1000, 512)]})
        (agg,) = result.aggregates
        assert (agg.device_index, agg.uid, agg.display_name, agg.used_memory_bytes) == (0, 1000, "alice", 512)

    def test_blocked_user_hidden_by_default(self, directory) -> None:
        result = Attributor(directory).attribute({0: [_usage(0, 512), _usage(1002, 1024)]})
        assert result.aggregates == ()

    def test_blocked_user_shown_with_flag(self, directory) -> None:
        result = Attributor(directory, show_unknown_users=True).attribute({0: [_usage(0, 512)]})
        assert [a.display_name for a in result.aggregates] == ["root"]

    def test_unresolvable_uid_dropped_without_flag(self, directory) -> None:
        result = Attributor(directory).attribute({0: [_usage(4242, 2048)]})
        assert result.aggregates == ()
        assert result.refreshed is True

    def test_unresolvable_uid_shown_numerically_with_flag(self, directory) -> None:
        result = Attributor(directory, show_unknown_users=True).attribute({0: [_usage(4242, 2048)]})
        (agg,) = result.aggregates
        assert agg.display_name == "4242"
        assert result.user_cards == {"4242": 1}

    def test_refresh_resolves_new_account(self, directory, accounts) -> None:
        accounts.accounts.append(Account(uid=1003, name="carol", shell="/bin/bash"))
        result = Attributor(directory).attribute({0: [_usage(1003, 4096)]})
        assert [a.display_name for a in result.aggregates] == ["carol"]


class TestRefreshBound:
    def test_many_unknown_uids_refresh_once(self, directory, accounts) -> None:
        usage = {
            0: [_usage(5000 + i, 100) for i in range(10)],
            1: [_usage(6000 + i, 100) for i in range(10)],
        }
        Attributor(directory).attribute(usage)
        # one enumeration at construction, one for the cycle
        assert accounts.calls == 2

    def test_each_cycle_may_refresh_again(self, directory, accounts) -> None:
        attributor = Attributor(directory)
        attributor.attribute({0: [_usage(5000, 100)]})
        attributor.attribute({0: [_usage(5001, 100)]})
        assert accounts.calls == 3

    def test_show_all_still_refreshes_before_numeric_fallback(self, directory, accounts) -> None:
        accounts.accounts.append(Account(uid=1003, name="carol", shell="/bin/bash"))
        result = Attributor(directory, show_unknown_users=True).attribute({
            0: [_usage(1003, 4096), _usage(4242, 2048)],
        })
        assert result.refreshed is True
        assert accounts.calls == 2
        assert [a.display_name for a in result.aggregates] == ["carol", "4242"]

    def test_no_refresh_when_everything_resolves(self, directory, accounts) -> None:
        result = Attributor(directory).attribute({0: [_usage(1000, 1), _usage(0, 1)]})
        assert result.refreshed is False
        assert accounts.calls == 1


class TestCardCount:
    def test_scenario_two_devices_one_user(self, directory) -> None:
        result = Attributor(directory).attribute({
            0: [_usage(1000, 1_000_000)],
            1: [_usage(1000, 0)],
        })
        assert [(a.device_index, a.display_name, a.used_memory_bytes) for a in result.aggregates] == [
            (0, "alice", 1_000_000)
        ]
        assert result.user_cards == {"alice": 1}

    def test_counts_distinct_devices(self, directory) -> None:
        result = Attributor(directory).attribute({
            0: [_usage(1000, 10), _usage(1001, 10)],
            1: [_usage(1000, 10)],
            3: [_usage(1000, 10)],
        })
        assert result.user_cards == {"alice": 3, "bob": 1}

    def test_shared_name_counted_together_rows_kept_apart(self) -> None:
        accounts = FakeAccounts([
            Account(uid=1000, name="shared", shell="/bin/bash"),
            Account(uid=2000, name="shared", shell="/bin/bash"),
        ])
        d = UserDirectory(UID_RANGE, enumerate_accounts=accounts)
        result = Attributor(d).attribute({
            0: [_usage(1000, 10), _usage(2000, 20)],
            1: [_usage(2000, 30)],
        })
        assert sorted((a.device_index, a.uid) for a in result.aggregates) == [(0, 1000), (0, 2000), (1, 2000)]
        assert result.user_cards == {"shared": 2}


class TestSumByUid:
    def test_sums_per_uid_and_treats_none_as_zero(self) -> None:
        rows = sum_by_uid([(1000, 10), (1001, None), (1000, 5)])
        assert sorted((r.owning_uid, r.used_memory_bytes) for r in rows) == [(1000, 15), (1001, 0)]
