"""
Presence — lifecycle signals in, online/away/offline out.

LifecycleHub is the host's side: it publishes window/app lifecycle signals and
hands each observer a Subscription that cancels exactly once.
PresenceStateMachine maps signals to a PresenceStatus and reports edges only.
"""

from .config import log
from .models import LifecycleSignal, PresenceStatus

SIGNAL_TO_STATUS = {
    LifecycleSignal.RESUMED: PresenceStatus.ONLINE,
    LifecycleSignal.INACTIVE: PresenceStatus.AWAY,
    LifecycleSignal.PAUSED: PresenceStatus.AWAY,
    LifecycleSignal.HIDDEN: PresenceStatus.AWAY,
    LifecycleSignal.DETACHED: PresenceStatus.OFFLINE,
}


class Subscription:
    """Cancellation handle returned by LifecycleHub.subscribe()."""

    def __init__(self, hub, callback):
        self._hub = hub
        self._callback = callback
        self.active = True

    def cancel(self):
        if not self.active:
            return
        self.active = False
        self._hub._remove(self._callback)


class LifecycleHub:
    """Fan-out of host lifecycle signals to observers."""

    def __init__(self):
        self._observers = []

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, callback):
        self._observers.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback):
        try:
            self._observers.remove(callback)
        except ValueError:
            pass

    def emit(self, signal):
        """Deliver a signal to every observer. Observer errors never reach the host."""
        try:
            signal = LifecycleSignal(signal)
        except ValueError:
            log.warning("Ignoring unknown lifecycle signal: %r", signal)
            return
        for callback in list(self._observers):
            try:
                callback(signal)
            except Exception as e:
                log.error("Lifecycle observer error on %s: %s", signal.value, e, exc_info=True)


class PresenceStateMachine:
    """Holds the current PresenceStatus; calls on_change only when it changes."""

    def __init__(self, on_change=None, initial=PresenceStatus.ONLINE):
        self._status = PresenceStatus(initial)
        self._on_change = on_change

    @property
    def status(self) -> PresenceStatus:
        return self._status

    def handle(self, signal):
        """Apply a lifecycle signal. Returns True if the status changed."""
        try:
            status = SIGNAL_TO_STATUS[LifecycleSignal(signal)]
        except ValueError:
            log.warning("Ignoring unknown lifecycle signal: %r", signal)
            return False
        return self.set(status)

    def set(self, status):
        status = PresenceStatus(status)
        if status == self._status:
            return False
        self._status = status
        log.info("Presence changed to: %s", status.value)
        if self._on_change is not None:
            self._on_change(status)
        return True
