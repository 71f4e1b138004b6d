"""Inbound command handling for game rooms.

Every command arrives as an envelope ``{"type": ..., "payload": {...}}`` on a
connection's :class:`Session`. Handlers authorize against that session,
mutate the room, rescore, persist the registry and fan the result out to
every connection attached to the room. All of it happens while holding the
store lock, so commands (and sweeper ticks) never interleave.
"""
import hmac
import logging
import random
from typing import Callable, Optional

from phasesort.models import GameConfig, PlayerState, Room, now_ms, validate_placements
from .attempts import GM_IDENTITY, AttemptGuard, AttemptKey
from .connections import ConnectionDirectory, Session
from .scoring import pick_hint
from .store import RoomStore, SqlSnapshotStore


logger = logging.getLogger(__name__)

BOOST_TYPES = ('add-time', 'double-points', 'reveal')
MAX_NAME_LEN = 32

_PLAYER_STATUS_FOR_ROOM = {'lobby': 'ready', 'active': 'playing', 'ended': 'done'}


class ProtocolError(Exception):
    """Malformed or illegal command; reported to the sender only."""


class AuthorizationError(ProtocolError):
    """Wrong role, identity, token, PIN or secret."""


class LockedOutError(ProtocolError):
    """Too many failed credential attempts for this key."""


def make_envelope(kind: str, payload: dict) -> dict:
    return {'type': kind, 'payload': payload}


def error_envelope(message: str) -> dict:
    return {'type': 'error', 'message': message}


def _token_matches(candidate, expected: str) -> bool:
    if not isinstance(candidate, str):
        return False
    return hmac.compare_digest(candidate.encode('utf-8'), expected.encode('utf-8'))


def _clean_name(value, default=None):
    if not isinstance(value, str):
        return default
    value = value.strip()[:MAX_NAME_LEN]
    return value or default


def _optional_secret(payload: dict, key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ProtocolError(f'{key} must be a string.')
    return value


def _parse_placements(value) -> dict:
    try:
        return validate_placements(value)
    except ValueError as exc:
        raise ProtocolError(f'Invalid placements: {exc}')


class Dispatcher:
    _handlers = {
        'host:create': '_host_create',
        'host:resume': '_host_resume',
        'host:update-config': '_host_update_config',
        'host:start': '_host_start',
        'host:end': '_host_end',
        'host:rotate-pin': '_host_rotate_pin',
        'player:join': '_player_join',
        'player:update-progress': '_player_update_progress',
        'player:use-hint': '_player_use_hint',
        'player:use-boost': '_player_use_boost',
        'ping': '_ping',
    }

    def __init__(self, store: RoomStore, directory: ConnectionDirectory, guard: AttemptGuard,
                 send: Callable[[str, dict], None], rng=None, boost_time_ms: int = 10_000):
        self.store = store
        self.directory = directory
        self.guard = guard
        self.send = send
        self.rng = rng or random.Random()
        self.boost_time_ms = boost_time_ms

    @classmethod
    def from_config(cls, config, send, clock=now_ms, rng=None) -> 'Dispatcher':
        store = RoomStore(
            SqlSnapshotStore(clock=clock),
            clock=clock,
            leaderboard_size=int(config.get('LEADERBOARD_SIZE', 20)),
        )
        guard = AttemptGuard(
            max_failures=int(config.get('MAX_FAILED_ATTEMPTS', 5)),
            lockout_ms=int(config.get('LOCKOUT_SEC', 60)) * 1000,
            clock=clock,
        )
        return cls(store, ConnectionDirectory(), guard, send, rng=rng,
                   boost_time_ms=int(config.get('BOOST_TIME_MS', 10_000)))

    @property
    def clock(self):
        return self.store.clock

    # ---- connection lifecycle ----

    def connect(self, sid: str) -> Session:
        with self.store.lock:
            return self.directory.open(sid)

    def disconnect(self, sid: str) -> None:
        with self.store.lock:
            session = self.directory.close(sid)
            if session:
                self._detach(session)

    def dispatch(self, session: Session, message) -> None:
        if not isinstance(message, dict) or not isinstance(message.get('type'), str):
            self._error(session, 'Invalid message envelope.')
            return
        kind = message['type']
        payload = message.get('payload')
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            self._error(session, 'Invalid message payload.')
            return
        handler_name = self._handlers.get(kind)
        if handler_name is None:
            self._error(session, f'Unknown message type: {kind}')
            return
        handler = getattr(self, handler_name)
        with self.store.lock:
            try:
                handler(session, payload)
            except ProtocolError as exc:
                logger.info(f"[rejected] type={kind} sid={session.sid} reason={exc}")
                self._error(session, str(exc))
            except Exception:
                logger.exception(f"[dispatch] unhandled error type={kind} sid={session.sid}")
                self._error(session, 'Internal server error.')

    # ---- lifecycle transitions shared with the sweeper ----

    def end_game(self, room: Room) -> bool:
        """Move an active room to ended. Returns False when it already was."""
        if room.status == 'ended':
            return False
        room.status = 'ended'
        for p in room.players.values():
            p.status = 'done'
        self.store.rescore(room)
        self.store.persist()
        self._broadcast_state(room, 'game:ended')
        logger.info(f"[game-end] code={room.code} players={len(room.players)}")
        return True

    # ---- outbound helpers ----

    def _deliver(self, sid: str, envelope: dict) -> None:
        try:
            self.send(sid, envelope)
        except Exception:
            logger.warning(f"[send] delivery failed sid={sid} type={envelope.get('type')}", exc_info=True)

    def _unicast(self, session: Session, kind: str, payload: dict) -> None:
        self._deliver(session.sid, make_envelope(kind, payload))

    def _error(self, session: Session, message: str) -> None:
        self._deliver(session.sid, error_envelope(message))

    def _broadcast(self, room: Room, kind: str, payload: dict) -> None:
        for sid in list(room.connections):
            self._deliver(sid, make_envelope(kind, payload))

    def _broadcast_state(self, room: Room, kind: str = 'room:update') -> None:
        """Send the room snapshot to each connection; only GM sessions see secrets."""
        public = {'room': room.snapshot()}
        private = None
        for sid in list(room.connections):
            session = self.directory.get(sid)
            if session and session.is_gm and session.room_code == room.code:
                if private is None:
                    private = {'room': room.snapshot(include_secrets=True)}
                self._deliver(sid, make_envelope(kind, private))
            else:
                self._deliver(sid, make_envelope(kind, public))

    # ---- session helpers ----

    def _attach(self, session: Session, room: Room, role: str, identity: str) -> None:
        if session.room_code and session.room_code != room.code:
            self._detach(session)
        room.connections.add(session.sid)
        session.role = role
        session.room_code = room.code
        session.identity = identity

    def _detach(self, session: Session) -> None:
        room = self.store.get(session.room_code)
        if room:
            room.connections.discard(session.sid)

    def _require_gm(self, session: Session, payload: dict, action: str) -> Room:
        if not session.is_gm:
            raise AuthorizationError(f'Only GM can {action}.')
        room = self.store.get(payload.get('code', session.room_code))
        if room is None:
            raise ProtocolError('Room not found.')
        if session.room_code != room.code:
            raise AuthorizationError(f'Only GM can {action}.')
        if not _token_matches(payload.get('gmToken'), room.gm_token):
            raise AuthorizationError(f'Invalid GM token for {action}.')
        return room

    def _require_player(self, session: Session, payload: dict):
        identity = payload.get('identity')
        if session.role != 'player' or not isinstance(identity, str) or identity != session.identity:
            raise AuthorizationError('Player authentication failed.')
        room = self.store.get(session.room_code)
        if room is None:
            raise ProtocolError('Room not found.')
        player = room.players.get(identity)
        if player is None:
            raise ProtocolError('Player not found.')
        return room, player

    @staticmethod
    def _require_open(room: Room) -> None:
        if room.status == 'ended':
            raise ProtocolError('Game has ended.')

    def _lock_message(self, prefix: str) -> str:
        return f'{prefix} Try again in {self.guard.lockout_ms // 1000}s.'

    def _fail(self, key: AttemptKey, message: str, locked_message: str):
        record = self.guard.register_failure(key)
        logger.warning(
            f"[lockout] {key.kind} fail code={key.room_code} identity={key.identity} fails={record.fail_count}"
        )
        if record.is_locked(self.clock()):
            raise LockedOutError(locked_message)
        raise AuthorizationError(message)

    # ---- host commands ----

    def _host_create(self, session: Session, payload: dict) -> None:
        name = _clean_name(payload.get('name'), 'GM')
        try:
            config = GameConfig.from_dict(payload.get('config'))
        except ValueError as exc:
            raise ProtocolError(f'Invalid config: {exc}')
        gm_pass = _optional_secret(payload, 'gmPass')
        player_pass = _optional_secret(payload, 'playerPass')

        room = self.store.create(name, config, gm_pass=gm_pass, player_pass=player_pass)
        self._attach(session, room, 'gm', GM_IDENTITY)
        self._unicast(session, 'host:created', {
            'code': room.code,
            'gmToken': room.gm_token,
            'pin': room.pin,
            'room': room.snapshot(include_secrets=True),
        })
        self.store.persist()
        self._broadcast_state(room)

    def _host_resume(self, session: Session, payload: dict) -> None:
        room = self.store.get(payload.get('code'))
        if room is None:
            raise ProtocolError('Room not found.')
        key = AttemptKey('gm', room.code, GM_IDENTITY)
        if self.guard.is_locked(key):
            logger.warning(f"[lockout] gm resume locked code={room.code}")
            raise LockedOutError(self._lock_message('Too many failed GM attempts.'))
        locked_message = self._lock_message('GM locked out due to failed attempts.')
        if not _token_matches(payload.get('gmToken'), room.gm_token):
            self._fail(key, 'Invalid room code or GM token.', locked_message)
        if not self.store.check_secret(room.gm_secret_hash, payload.get('gmPass')):
            self._fail(key, 'GM passcode incorrect.', locked_message)
        self.guard.clear(key)
        self._attach(session, room, 'gm', GM_IDENTITY)
        self._unicast(session, 'room:update', {'room': room.snapshot(include_secrets=True)})

    def _host_update_config(self, session: Session, payload: dict) -> None:
        room = self._require_gm(session, payload, 'update config')
        self._require_open(room)
        if not isinstance(payload.get('config'), dict):
            raise ProtocolError('config is required.')
        try:
            room.game_config = room.game_config.merged(payload['config'])
        except ValueError as exc:
            raise ProtocolError(f'Invalid config: {exc}')
        # A new time limit moves every player's clock
        self.store.rescore(room)
        self.store.persist()
        self._broadcast_state(room)

    def _host_start(self, session: Session, payload: dict) -> None:
        room = self._require_gm(session, payload, 'start the game')
        if room.status == 'active':
            raise ProtocolError('Game has already started.')
        self._require_open(room)
        room.status = 'active'
        room.start_at = self.clock()
        for p in room.players.values():
            p.status = 'playing'
        self.store.rescore(room)
        self.store.persist()
        self._broadcast_state(room, 'game:started')
        logger.info(f"[game-start] code={room.code} players={len(room.players)}")

    def _host_end(self, session: Session, payload: dict) -> None:
        room = self._require_gm(session, payload, 'end the game')
        if room.status == 'lobby':
            raise ProtocolError('Game has not started.')
        self.end_game(room)

    def _host_rotate_pin(self, session: Session, payload: dict) -> None:
        room = self._require_gm(session, payload, 'rotate the PIN')
        self._require_open(room)
        pin = self.store.rotate_pin(room)
        self.store.persist()
        self._unicast(session, 'host:pin-rotated', {'pin': pin})

    # ---- player commands ----

    def _player_join(self, session: Session, payload: dict) -> None:
        room = self.store.get(payload.get('code'))
        if room is None:
            raise ProtocolError('Room not found.')
        identity = payload.get('identity')
        if not isinstance(identity, str) or not identity.strip():
            raise ProtocolError('identity is required.')
        name = _clean_name(payload.get('name'))
        if name is None:
            raise ProtocolError('name is required.')

        key = AttemptKey('player', room.code, identity)
        if self.guard.is_locked(key):
            logger.warning(f"[lockout] player join locked code={room.code} identity={identity}")
            raise LockedOutError(self._lock_message('Too many failed attempts.'))
        pin = payload.get('pin')
        if isinstance(pin, int) and not isinstance(pin, bool):
            pin = f'{pin:04d}'
        if not _token_matches(pin, room.pin):
            self._fail(key, 'PIN is incorrect.', self._lock_message('Locked after bad PIN.'))
        if not self.store.check_secret(room.player_secret_hash, payload.get('playerPass')):
            self._fail(key, 'Player passcode incorrect.', self._lock_message('Locked after bad passcode.'))
        self.guard.clear(key)

        self._attach(session, room, 'player', identity)
        player = room.players.get(identity)
        if player is None:
            player = PlayerState(
                identity=identity,
                name=name,
                hints_left=room.game_config.hints_per_player,
                boosts_left=room.game_config.boosts_per_player,
                status=_PLAYER_STATUS_FOR_ROOM[room.status],
            )
            room.players[identity] = player
            logger.info(f"[player-join] code={room.code} identity={identity} name={name!r}")
        else:
            player.name = name
        self.store.rescore(room, player)
        self.store.persist()
        self._broadcast_state(room)

    def _player_update_progress(self, session: Session, payload: dict) -> None:
        room, player = self._require_player(session, payload)
        self._require_open(room)
        player.placements = _parse_placements(payload.get('placements'))
        self.store.rescore(room, player)
        self.store.persist()
        self._broadcast_state(room)

    def _player_use_hint(self, session: Session, payload: dict) -> None:
        room, player = self._require_player(session, payload)
        self._require_open(room)
        placements = None
        if payload.get('placements') is not None:
            placements = _parse_placements(payload['placements'])
        if not room.game_config.allow_hints or player.hints_left <= 0:
            return
        if placements is not None:
            player.placements = placements
        quote = pick_hint(player, self.rng)
        if quote is None and placements is None:
            return
        if quote is not None:
            player.hints_left -= 1
            self._unicast(session, 'hint:grant', {'quoteId': quote.id, 'phase': quote.phase})
        self.store.rescore(room, player)
        self.store.persist()
        self._broadcast_state(room)

    def _player_use_boost(self, session: Session, payload: dict) -> None:
        room, player = self._require_player(session, payload)
        self._require_open(room)
        boost = payload.get('type')
        if boost not in BOOST_TYPES:
            raise ProtocolError('Unknown boost type.')
        if not room.game_config.boosts_enabled or player.boosts_left <= 0:
            return
        player.boosts_left -= 1
        if boost == 'add-time':
            player.time_bonus_ms += self.boost_time_ms
        elif boost == 'double-points':
            # Stacks per use and survives regrading
            player.bonus_points += 2
        else:
            quote = pick_hint(player, self.rng)
            if quote is not None:
                self._unicast(session, 'hint:grant', {'quoteId': quote.id, 'phase': quote.phase})
        self.store.rescore(room, player)
        self.store.persist()
        self._broadcast(room, 'boost:applied', {'type': boost, 'targetName': player.name})
        self._broadcast_state(room)

    def _ping(self, session: Session, payload: dict) -> None:
        self._unicast(session, 'pong', {})
