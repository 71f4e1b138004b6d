import logging
from typing import List, Optional

from phasesort import socketio
from .protocol import Dispatcher
from .scoring import deadline_ms


logger = logging.getLogger(__name__)


def sweep_expired(dispatcher: Dispatcher, now: Optional[int] = None) -> List[str]:
    """End every active room whose deadline has passed.

    Runs under the store lock so a tick never overlaps a command. Returns the
    codes of the rooms it ended.
    """
    ended = []
    with dispatcher.store.lock:
        if now is None:
            now = dispatcher.clock()
        for room in dispatcher.store.active_rooms():
            deadline = deadline_ms(room)
            if deadline is None or now <= deadline:
                continue
            logger.info(f"[sweep] code={room.code} deadline={deadline} now={now} overdue={now - deadline}ms")
            if dispatcher.end_game(room):
                ended.append(room.code)
    return ended


def start_deadline_sweeper(app, dispatcher: Dispatcher) -> bool:
    """Start the background task that ends rooms once their time runs out.

    - No-ops in TESTING mode unless ENABLE_SWEEPER_IN_TESTS is set
    - Ticks every SWEEP_INTERVAL_SEC regardless of client traffic
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SWEEPER_IN_TESTS'):
        return False

    interval = float(app.config.get('SWEEP_INTERVAL_SEC', 1))

    def _worker():
        app.logger.info(f"[sweep-start] interval={interval}s")
        while True:
            socketio.sleep(interval)
            with app.app_context():
                try:
                    sweep_expired(dispatcher)
                except Exception:
                    app.logger.exception("[sweep] tick failed")

    socketio.start_background_task(_worker)
    return True
