"""
OS account directory used for GPU memory attribution.

Accounts are partitioned into "known" (regular login accounts inside the
login.defs UID range) and "blocked" (system / service / no-login accounts).
The partition is cached and rebuilt on demand by the attribution step.
"""

from __future__ import annotations

import logging
import pwd
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from ..config import DEFAULT_LOGIN_DEFS, read_uid_range

logger = logging.getLogger(__name__)

NOLOGIN_SHELLS: Tuple[str, ...] = ("/sbin/nologin", "/usr/sbin/nologin")


@dataclass(frozen=True)
class Account:
    """Raw account record as returned by the enumeration call"""

    uid: int
    name: str
    shell: str


@dataclass(frozen=True)
class UserIdentity:
    uid: int
    display_name: str
    is_known: bool


UserMap = Dict[int, UserIdentity]


def enumerate_system_accounts() -> list[Account]:
    """Read every entry of the local account database"""
    return [Account(uid=p.pw_uid, name=p.pw_name, shell=p.pw_shell) for p in pwd.getpwall()]


class UserDirectory:
    """
    Cached known/blocked partition of the system accounts.

    Typical usage:
        directory = UserDirectory()              # reads login.defs, fails fast
        identity = directory.lookup(1000)
        directory.refresh()                      # after an unknown uid shows up
    """

    def __init__(
        self,
        uid_range: Optional[Tuple[int, int]] = None,
        *,
        login_defs: Path = DEFAULT_LOGIN_DEFS,
        enumerate_accounts: Callable[[], Iterable[Account]] = enumerate_system_accounts,
        nologin_shells: Sequence[str] = NOLOGIN_SHELLS,
    ) -> None:
        # Raises ConfigError at startup if login.defs is unusable
        self.uid_min, self.uid_max = uid_range if uid_range is not None else read_uid_range(login_defs)
        self._enumerate = enumerate_accounts
        self._nologin_shells = frozenset(nologin_shells)
        self._lock = threading.Lock()
        self.known: UserMap = {}
        self.blocked: UserMap = {}
        self.refresh_count = 0
        self.refresh()

    def is_known_account(self, account: Account) -> bool:
        return self.uid_min <= account.uid < self.uid_max and account.shell not in self._nologin_shells

    def refresh(self) -> Tuple[UserMap, UserMap]:
        """Re-enumerate accounts and rebuild both partitions in place"""
        known: UserMap = {}
        blocked: UserMap = {}
        for account in self._enumerate():
            is_known = self.is_known_account(account)
            target = known if is_known else blocked
            # First entry wins when the database lists a uid twice
            if account.uid in known or account.uid in blocked:
                continue
            target[account.uid] = UserIdentity(uid=account.uid, display_name=account.name, is_known=is_known)

        with self._lock:
            self.known = known
            self.blocked = blocked
            self.refresh_count += 1

        logger.debug(f"User directory rebuilt: {len(known)} known, {len(blocked)} blocked accounts")
        return known, blocked

    def lookup(self, uid: int) -> Optional[UserIdentity]:
        """Known partition first, then blocked; None if the uid is in neither"""
        with self._lock:
            return self.known.get(uid) or self.blocked.get(uid)

    def __contains__(self, uid: int) -> bool:
        return self.lookup(uid) is not None


__all__ = ["Account", "UserIdentity", "UserDirectory", "enumerate_system_accounts", "NOLOGIN_SHELLS"]
