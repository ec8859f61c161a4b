"""
=============================================================================
SHUTDOWN SIGNAL AND SESSION JOIN SET
=============================================================================

The two synchronization primitives shared across sessions.

SHUTDOWN SIGNAL
───────────────
A one-shot broadcast. The server creates it once; every live session
watches it at each blocking point.

    trigger()  ──►  [ set ]  ──►  Reader A sees it
                              ──►  Router A sees it
                              ──►  Reader B sees it ...

Triggering twice is a no-op, not an error: a SIGTERM arriving while the
server is already shutting down must be harmless.

SESSION GROUP
─────────────
The server's join set (a wait group). A session is added before its thread
starts and removed when it publishes completion. shutdown() waits until the
set is empty.

    add(s1) add(s2) add(s3)           count = 3
    done(s2)                          count = 2
    done(s1) done(s3)                 count = 0  ──► wait() returns True

=============================================================================
"""

import threading
from typing import Optional, Set


class ShutdownSignal:
    """Process-wide, one-shot broadcast condition."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    def trigger(self) -> bool:
        """
        Raise the signal.

        Returns:
            True for the call that actually raised it, False afterwards.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def __bool__(self) -> bool:
        return self._event.is_set()


class SessionGroup:
    """
    Join set tracking live sessions.

    Any hashable object can be tracked; the server uses ConnectionSession
    instances.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._members: Set[object] = set()

    def add(self, member: object) -> None:
        with self._cond:
            self._members.add(member)

    def done(self, member: object) -> None:
        """
        Mark a member finished.

        Raises:
            RuntimeError: If the member is not (or no longer) in the group.
                A second done() for one session means it signalled
                completion twice.
        """
        with self._cond:
            if member not in self._members:
                raise RuntimeError(f"{member!r} is not a live member of this group")
            self._members.remove(member)
            if not self._members:
                self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the group is empty.

        Returns:
            True if empty, False if the timeout expired first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._members, timeout)

    def snapshot(self) -> list:
        with self._cond:
            return list(self._members)

    def __len__(self) -> int:
        with self._cond:
            return len(self._members)
