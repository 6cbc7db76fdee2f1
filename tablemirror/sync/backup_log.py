"""Reference-counted row backups for rolling back optimistic writes.

Each identity has at most one BackupEntry. The entry holds the row as it was
before the first in-flight mutation touched it, a reference count of the
mutations still holding it, and the ordered list of those mutation attempts
with the value each one wrote to the cache.

Overlapping attempts on one identity roll back like a stack:

- a failing attempt that is the newest surviving one restores the value of
  the nearest older surviving attempt, or the entry snapshot if there is none;
- a failing attempt with a newer surviving attempt restores nothing and
  leaves the newer attempt's value in the cache.

So two overlapping attempts that both fail leave the cache at the snapshot
taken before the first one, and an older success followed by a newer failure
leaves the cache at the older attempt's value.
"""

import copy
import itertools
import logging
from dataclasses import dataclass, field

from ..errors import BackupInvariantError
from ..rows import TableRow

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class BackupEntry:
    """Backup state for one identity."""

    identity: str
    snapshot: TableRow | None  # None: row was not cached before the mutation
    refcount: int = 1
    attempts: dict[int, TableRow | None] = field(default_factory=dict)


class PessimisticWriteLog:
    """Backup store keyed by row identity."""

    def __init__(self):
        self._entries: dict[str, BackupEntry] = {}
        self._tokens = itertools.count(1)

    def backup(
        self,
        identity: str,
        row: TableRow | None,
        staged: "TableRow | None | object" = _UNSET,
    ) -> int:
        """Take (or share) the backup for ``identity``.

        Args:
            identity: Row identity.
            row: Row as currently cached, or None if absent. Ignored when
                an entry already exists.
            staged: Value this attempt writes to the cache (None for a
                delete). Defaults to ``row``.

        Returns:
            Token identifying this attempt in later release calls.
        """
        token = next(self._tokens)
        entry = self._entries.get(identity)
        if entry is None:
            entry = BackupEntry(identity=identity, snapshot=copy.deepcopy(row))
            self._entries[identity] = entry
        else:
            entry.refcount += 1
        entry.attempts[token] = copy.deepcopy(row) if staged is _UNSET else staged
        logger.debug(f"Backup {identity} refcount={entry.refcount} token={token}")
        return token

    def release(
        self, identity: str, token: int | None = None, failed: bool = False
    ) -> TableRow | None:
        """Drop one reference to the backup of ``identity``.

        Args:
            identity: Row identity.
            token: Attempt token returned by backup().
            failed: Whether the attempt failed; its staged value is then
                forgotten so later rollbacks skip it.

        Returns:
            The stored snapshot. The entry is removed once its refcount
            reaches zero.

        Raises:
            BackupInvariantError: If no backup exists for ``identity``.
        """
        entry = self._entries.get(identity)
        if entry is None:
            raise BackupInvariantError(f"No backup held for row {identity}")

        entry.refcount -= 1
        if failed and token is not None:
            entry.attempts.pop(token, None)
        if entry.refcount == 0:
            del self._entries[identity]
        logger.debug(f"Released {identity} refcount={entry.refcount}")
        return entry.snapshot

    def restore_point(self, identity: str, token: int) -> tuple[bool, TableRow | None]:
        """Work out what a failing attempt should roll the cache back to.

        Must be called before the attempt is released.

        Returns:
            ``(is_newest, value)``. Only when ``is_newest`` is True should
            the cache be restored to ``value`` (None meaning "absent").
        """
        entry = self._entries.get(identity)
        if entry is None or token not in entry.attempts:
            raise BackupInvariantError(
                f"No backup attempt {token} held for row {identity}"
            )
        tokens = list(entry.attempts)
        position = tokens.index(token)
        is_newest = position == len(tokens) - 1
        if position == 0:
            return is_newest, entry.snapshot
        return is_newest, entry.attempts[tokens[position - 1]]

    def has(self, identity: str) -> bool:
        return identity in self._entries

    def get(self, identity: str) -> BackupEntry | None:
        return self._entries.get(identity)

    def refcount(self, identity: str) -> int:
        entry = self._entries.get(identity)
        return entry.refcount if entry else 0

    def __len__(self) -> int:
        return len(self._entries)
