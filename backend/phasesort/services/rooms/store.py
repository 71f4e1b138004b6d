import json
import logging
import secrets
import threading
import uuid
from typing import Dict, List, Optional

from phasesort import bcrypt, db
from phasesort.models import GameConfig, Room, RoomRecord, generate_room_code, now_ms
from .scoring import grade, grade_all, merge_leaderboard


logger = logging.getLogger(__name__)


def generate_pin() -> str:
    return f"{secrets.randbelow(10000):04d}"


def generate_gm_token() -> str:
    # uuid4 draws from os.urandom
    return str(uuid.uuid4())


class SnapshotPort:
    """Where the full room registry is written after every mutation."""

    def save(self, records: List[dict]) -> None:
        raise NotImplementedError

    def load(self) -> List[dict]:
        raise NotImplementedError


class SqlSnapshotStore(SnapshotPort):
    """Keeps the registry in the ``room_record`` table.

    Each save replaces every row in one transaction, so readers never see a
    half-written registry. Needs an application context.
    """

    def __init__(self, clock=now_ms):
        self.clock = clock

    def save(self, records):
        saved_at = self.clock()
        try:
            RoomRecord.query.delete()
            for record in records:
                db.session.add(RoomRecord(code=record['code'], payload=json.dumps(record), saved_at=saved_at))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def load(self):
        return [r.to_dict() for r in RoomRecord.query.order_by(RoomRecord.code).all()]


class RoomStore:
    """Owns every live Room.

    ``lock`` serializes all writers: command dispatch and sweeper ticks both
    hold it for the whole of their run.
    """

    def __init__(self, snapshots: SnapshotPort, clock=now_ms, leaderboard_size: int = 20):
        self.snapshots = snapshots
        self.clock = clock
        self.leaderboard_size = leaderboard_size
        self.rooms: Dict[str, Room] = {}
        self.lock = threading.RLock()

    def __len__(self):
        return len(self.rooms)

    def get(self, code) -> Optional[Room]:
        if not isinstance(code, str):
            return None
        return self.rooms.get(code.strip().upper())

    def active_rooms(self) -> List[Room]:
        return [r for r in self.rooms.values() if r.status == 'active']

    def create(self, host_name: str, config: GameConfig, gm_pass: Optional[str] = None,
               player_pass: Optional[str] = None) -> Room:
        room = Room(
            code=generate_room_code(self.rooms),
            host_name=host_name,
            game_config=config,
            gm_token=generate_gm_token(),
            pin=generate_pin(),
            gm_secret_hash=self._hash_secret(gm_pass),
            player_secret_hash=self._hash_secret(player_pass),
        )
        self.rooms[room.code] = room
        logger.info(f"[room-create] code={room.code} host={host_name!r}")
        return room

    def rotate_pin(self, room: Room) -> str:
        room.pin = generate_pin()
        return room.pin

    @staticmethod
    def _hash_secret(secret):
        if not secret:
            return None
        return bcrypt.generate_password_hash(secret).decode('utf-8')

    @staticmethod
    def check_secret(secret_hash, candidate) -> bool:
        """True when no secret is set, or ``candidate`` matches it."""
        if not secret_hash:
            return True
        if not isinstance(candidate, str) or not candidate:
            return False
        return bcrypt.check_password_hash(secret_hash, candidate)

    def rescore(self, room: Room, player=None) -> None:
        """Regrade ``player`` (or everyone when None), then merge the leaderboard."""
        now = self.clock()
        if player is None:
            grade_all(room, now)
        else:
            grade(room, player, now)
        merge_leaderboard(room, now, limit=self.leaderboard_size)

    def persist(self) -> None:
        """Write the full registry. Failures are logged and swallowed."""
        records = [room.to_record() for room in self.rooms.values()]
        try:
            self.snapshots.save(records)
        except Exception:
            logger.exception(f"[persist] failed to save {len(records)} room(s)")

    def reload(self) -> int:
        """Rebuild the registry from the last snapshot.

        Every room comes back in the lobby with its clock cleared; scores and
        leaderboards are recomputed rather than trusted, then re-persisted.
        """
        with self.lock:
            try:
                records = self.snapshots.load()
            except Exception:
                logger.exception("[reload] could not read room snapshot")
                return 0
            for data in records:
                try:
                    room = Room.from_record(data)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning(f"[reload] skipping unreadable room record: {exc}")
                    continue
                self.rooms[room.code] = room
                self.rescore(room)
            self.persist()
            logger.info(f"[reload] loaded {len(self.rooms)} persisted room(s)")
            return len(self.rooms)
