from phasesort import db
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Set
import json
import string
import random
import time

from phasesort.quotes import PHASES


def now_ms() -> int:
    return int(time.time() * 1000)


class RoomRecord(db.Model):
    """Persisted copy of one room; the table as a whole is the registry snapshot."""
    __tablename__ = 'room_record'
    code = db.Column(db.String(4), primary_key=True)
    payload = db.Column(db.Text, nullable=False)  # JSON-encoded Room.to_record()
    saved_at = db.Column(db.BigInteger, nullable=False)

    def to_dict(self):
        return json.loads(self.payload)


# Wire name -> (attribute, kind)
_CONFIG_FIELDS = {
    'timeLimitSeconds': ('time_limit_seconds', 'positive'),
    'allowHints': ('allow_hints', 'bool'),
    'hintsPerPlayer': ('hints_per_player', 'count'),
    'boostsEnabled': ('boosts_enabled', 'bool'),
    'boostsPerPlayer': ('boosts_per_player', 'count'),
    'themeId': ('theme_id', 'str'),
    'showPhaseOutlines': ('show_phase_outlines', 'bool'),
}


@dataclass
class GameConfig:
    time_limit_seconds: int = 240
    allow_hints: bool = True
    hints_per_player: int = 2
    boosts_enabled: bool = True
    boosts_per_player: int = 2
    theme_id: str = 'biophilic'
    show_phase_outlines: bool = False

    def merged(self, changes) -> 'GameConfig':
        """Return a copy with the wire-named keys in ``changes`` applied.

        Unknown keys are ignored. Raises ValueError on an ill-typed value.
        """
        if not isinstance(changes, dict):
            raise ValueError('config must be an object')
        values = asdict(self)
        for key, (attr, kind) in _CONFIG_FIELDS.items():
            if key not in changes:
                continue
            value = changes[key]
            if kind == 'bool':
                if not isinstance(value, bool):
                    raise ValueError(f'{key} must be a boolean')
            elif kind == 'str':
                if not isinstance(value, str) or not value:
                    raise ValueError(f'{key} must be a non-empty string')
            else:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f'{key} must be a number')
                value = int(value)
                if value < 0 or (kind == 'positive' and value == 0):
                    raise ValueError(f'{key} is out of range')
            values[attr] = value
        return GameConfig(**values)

    def to_dict(self):
        return {key: getattr(self, attr) for key, (attr, _) in _CONFIG_FIELDS.items()}

    @classmethod
    def from_dict(cls, data) -> 'GameConfig':
        return cls().merged(data or {})


def validate_placements(placements) -> Dict[str, str]:
    if not isinstance(placements, dict):
        raise ValueError('placements must be an object')
    for quote_id, phase in placements.items():
        if not isinstance(quote_id, str) or phase not in PHASES:
            raise ValueError(f'invalid placement for {quote_id!r}')
    return dict(placements)


@dataclass
class PlayerState:
    identity: str
    name: str
    hints_left: int = 0
    boosts_left: int = 0
    score: int = 0
    correct_count: int = 0
    placements: Dict[str, str] = field(default_factory=dict)
    time_bonus_ms: int = 0
    # Accumulated double-points boosts; grading adds it on top of the formula
    bonus_points: int = 0
    status: str = 'ready'  # ready, playing, done

    def to_dict(self):
        return {
            'identity': self.identity,
            'name': self.name,
            'score': self.score,
            'correctCount': self.correct_count,
            'placements': dict(self.placements),
            'hintsLeft': self.hints_left,
            'boostsLeft': self.boosts_left,
            'timeBonusMs': self.time_bonus_ms,
            'bonusPoints': self.bonus_points,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data) -> 'PlayerState':
        return cls(
            identity=data['identity'],
            name=data.get('name') or '',
            hints_left=int(data.get('hintsLeft', 0)),
            boosts_left=int(data.get('boostsLeft', 0)),
            score=int(data.get('score', 0)),
            correct_count=int(data.get('correctCount', 0)),
            placements={k: v for k, v in (data.get('placements') or {}).items() if v in PHASES},
            time_bonus_ms=int(data.get('timeBonusMs', 0)),
            bonus_points=int(data.get('bonusPoints', 0)),
            status=data.get('status') or 'ready',
        )


@dataclass
class LeaderboardEntry:
    identity: str
    name: str
    score: int
    elapsed_ms: int
    recorded_at: int

    def to_dict(self):
        return {
            'identity': self.identity,
            'name': self.name,
            'score': self.score,
            'elapsedMs': self.elapsed_ms,
            'recordedAt': self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data) -> 'LeaderboardEntry':
        return cls(
            identity=data['identity'],
            name=data.get('name') or '',
            score=int(data.get('score', 0)),
            elapsed_ms=int(data.get('elapsedMs', 0)),
            recorded_at=int(data.get('recordedAt', 0)),
        )


def generate_room_code(taken, length=4):
    """Generate a short room code not present in ``taken``."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if code not in taken:
            return code


@dataclass
class Room:
    code: str
    host_name: str
    game_config: GameConfig
    gm_token: str
    pin: str
    gm_secret_hash: Optional[str] = None
    player_secret_hash: Optional[str] = None
    status: str = 'lobby'  # lobby, active, ended
    start_at: Optional[int] = None
    players: Dict[str, PlayerState] = field(default_factory=dict)
    leaderboard: List[LeaderboardEntry] = field(default_factory=list)
    # Connection ids currently attached; never persisted
    connections: Set[str] = field(default_factory=set)

    def snapshot(self, include_secrets=False):
        """Client-facing view. Secret hashes are never included."""
        data = {
            'code': self.code,
            'hostName': self.host_name,
            'status': self.status,
            'startAt': self.start_at,
            'gameConfig': self.game_config.to_dict(),
            'players': [p.to_dict() for p in self.players.values()],
            'leaderboard': [e.to_dict() for e in self.leaderboard],
        }
        if include_secrets:
            data['gmToken'] = self.gm_token
            data['pin'] = self.pin
        return data

    def to_record(self):
        return {
            'code': self.code,
            'hostName': self.host_name,
            'gameConfig': self.game_config.to_dict(),
            'players': [p.to_dict() for p in self.players.values()],
            'gmToken': self.gm_token,
            'pin': self.pin,
            'gmSecretHash': self.gm_secret_hash,
            'playerSecretHash': self.player_secret_hash,
            'leaderboard': [e.to_dict() for e in self.leaderboard],
        }

    @classmethod
    def from_record(cls, data) -> 'Room':
        """Rehydrate a persisted room. Status and clock always restart in the lobby."""
        players = [PlayerState.from_dict(p) for p in data.get('players') or []]
        for p in players:
            p.status = 'ready'
        return cls(
            code=data['code'],
            host_name=data.get('hostName') or 'GM',
            game_config=GameConfig.from_dict(data.get('gameConfig')),
            gm_token=data['gmToken'],
            pin=data['pin'],
            gm_secret_hash=data.get('gmSecretHash'),
            player_secret_hash=data.get('playerSecretHash'),
            players={p.identity: p for p in players},
            leaderboard=[LeaderboardEntry.from_dict(e) for e in data.get('leaderboard') or []],
        )
