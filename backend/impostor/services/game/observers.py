"""Push and poll observers for round state and room membership.

Both observers share one contract: ``fetch()`` returns the current snapshot
of a read path (or ``None`` when unavailable) and ``callback(snapshot)`` is
called with it. ``PushObserver`` re-fetches when the notifier announces a
change on its topic; ``PollingObserver`` re-fetches on an interval and only
calls back when the snapshot changed. ``observe`` prefers push and falls
back to polling.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from flask import current_app, has_app_context

from impostor import socketio

logger = logging.getLogger(__name__)


def _app_logger() -> logging.Logger:
    """The app's logger inside an app context; this module's child logger otherwise."""
    return current_app.logger if has_app_context() else logger


Fetch = Callable[[], Optional[Any]]
Callback = Callable[[Any], None]


def state_topic(room_id: int, round_number: int) -> str:
    return f"state:{room_id}:{round_number}"


def players_topic(room_id: int) -> str:
    return f"players:{room_id}"


def room_channel(room_id: int) -> str:
    """Socket.IO room that every client of a game room joins."""
    return f"room:{room_id}"


class Notifier:
    """In-process fan-out of change announcements keyed by topic."""

    def __init__(self):
        self._listeners: Dict[str, List[Callback]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, listener: Callback) -> None:
        with self._lock:
            self._listeners[topic].append(listener)

    def unsubscribe(self, topic: str, listener: Callback) -> None:
        with self._lock:
            listeners = self._listeners.get(topic, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(topic, None)

    def publish(self, topic: str, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(topic, []))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                _app_logger().exception(f"[notify] listener failed topic={topic}")


notifier = Notifier()


def publish_state_change(room_id: int, round_number: int, stage: str) -> None:
    payload = {'room_id': room_id, 'round': round_number, 'current_stage': stage}
    notifier.publish(state_topic(room_id, round_number), payload)
    socketio.emit('state_update', payload, to=room_channel(room_id), namespace='/ws')


def publish_players_change(room_id: int) -> None:
    payload = {'room_id': room_id}
    notifier.publish(players_topic(room_id), payload)
    socketio.emit('players_update', payload, to=room_channel(room_id), namespace='/ws')


class StateObserver(ABC):
    def __init__(self, fetch: Fetch, callback: Callback, log: Optional[logging.Logger] = None):
        self.fetch = fetch
        self.callback = callback
        self.log = log or _app_logger()

    @abstractmethod
    def start(self) -> 'StateObserver':
        """Begin delivering snapshots and return self."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering snapshots."""

    def _deliver(self):
        snapshot = self.fetch()
        if snapshot is not None:
            self.callback(snapshot)
        return snapshot


class PushObserver(StateObserver):
    """Delivers a fresh snapshot whenever ``topic`` is announced on the hub."""

    def __init__(self, topic: str, fetch: Fetch, callback: Callback,
                 hub: Notifier = notifier, log: Optional[logging.Logger] = None):
        super().__init__(fetch, callback, log=log)
        self.topic = topic
        self.hub = hub

    def start(self) -> 'PushObserver':
        self.hub.subscribe(self.topic, self._on_change)
        try:
            self._deliver()
        except Exception:
            self.log.exception(f"[observe] initial fetch failed topic={self.topic}")
        return self

    def stop(self) -> None:
        self.hub.unsubscribe(self.topic, self._on_change)

    def _on_change(self, _payload) -> None:
        self._deliver()


class PollingObserver(StateObserver):
    """Fetches every ``interval`` seconds and calls back on changed snapshots."""

    def __init__(self, fetch: Fetch, callback: Callback, interval: float = 3.0,
                 log: Optional[logging.Logger] = None):
        super().__init__(fetch, callback, log=log)
        self.interval = interval
        self._last = None
        self._stopped = threading.Event()

    def poll_once(self) -> bool:
        """Run one poll. True if the callback fired."""
        snapshot = self.fetch()
        if snapshot is None or snapshot == self._last:
            return False
        self._last = snapshot
        self.callback(snapshot)
        return True

    def start(self) -> 'PollingObserver':
        self._stopped.clear()
        socketio.start_background_task(self._run)
        return self

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.poll_once()
            except Exception:
                self.log.exception("[observe] poll failed")
            self._stopped.wait(self.interval)


def observe(topic: str, fetch: Fetch, callback: Callback, hub: Notifier = notifier,
            interval: float = 3.0, log: Optional[logging.Logger] = None) -> StateObserver:
    """Subscribe through the hub; poll instead if the subscription cannot be set up."""
    log = log or _app_logger()
    try:
        return PushObserver(topic, fetch, callback, hub=hub, log=log).start()
    except Exception as exc:
        log.warning(f"[observe] push unavailable for {topic} ({exc!r}); polling every {interval}s")
        return PollingObserver(fetch, callback, interval=interval, log=log).start()


def state_fetcher(app, room_id: int, round_number: int) -> Fetch:
    """Read path shared by push and poll observers of a round's stage."""
    from impostor.services.game.state import get_game_state

    def fetch():
        with app.app_context():
            return get_game_state(room_id, round_number)
    return fetch


def players_fetcher(app, room_id: int) -> Fetch:
    from impostor.services.game.rooms import list_players

    def fetch():
        with app.app_context():
            return list_players(room_id)
    return fetch


def observe_state(app, room_id: int, round_number: int, callback: Callback,
                  hub: Notifier = notifier) -> StateObserver:
    return observe(
        state_topic(room_id, round_number),
        state_fetcher(app, room_id, round_number),
        callback,
        hub=hub,
        interval=float(app.config.get('STATE_POLL_INTERVAL_SEC', 3)),
        log=app.logger,
    )


def observe_players(app, room_id: int, callback: Callback,
                    hub: Notifier = notifier) -> StateObserver:
    return observe(
        players_topic(room_id),
        players_fetcher(app, room_id),
        callback,
        hub=hub,
        interval=float(app.config.get('STATE_POLL_INTERVAL_SEC', 3)),
        log=app.logger,
    )
