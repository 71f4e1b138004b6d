from typing import List, Optional

from phasesort.models import LeaderboardEntry, PlayerState, Room
from phasesort.quotes import QUOTES, Quote


def elapsed_ms(room: Room, now: int) -> int:
    if not room.start_at:
        return 0
    return now - room.start_at


def grade(room: Room, player: PlayerState, now: int) -> None:
    """Recompute correctCount and score for one player in place.

    10 points per correctly placed quote plus one point per whole second
    left on the player's clock. Accumulated double-points bonuses are added
    on top and are not derived from placements or time.
    """
    correct = sum(1 for q in QUOTES if player.placements.get(q.id) == q.phase)
    player.correct_count = correct
    remaining = (
        room.game_config.time_limit_seconds * 1000
        + player.time_bonus_ms
        - elapsed_ms(room, now)
    )
    player.score = correct * 10 + max(0, remaining // 1000) + player.bonus_points


def grade_all(room: Room, now: int) -> None:
    for player in room.players.values():
        grade(room, player, now)


def merge_leaderboard(room: Room, now: int, limit: int = 20) -> None:
    """Fold current player results into the room's best-result history."""
    elapsed = elapsed_ms(room, now)
    by_identity = {e.identity: e for e in room.leaderboard}
    for p in room.players.values():
        existing = by_identity.get(p.identity)
        if existing is None:
            by_identity[p.identity] = LeaderboardEntry(
                identity=p.identity,
                name=p.name,
                score=p.score,
                elapsed_ms=elapsed,
                recorded_at=now,
            )
        elif p.score > existing.score or (p.score == existing.score and elapsed < existing.elapsed_ms):
            existing.name = p.name
            existing.score = p.score
            existing.elapsed_ms = elapsed
            existing.recorded_at = now
    ranked = sorted(by_identity.values(), key=lambda e: (-e.score, e.elapsed_ms))
    room.leaderboard = ranked[:limit]


def unsolved_quotes(player: PlayerState) -> List[Quote]:
    """Quotes the player has not placed correctly (unplaced ones included)."""
    return [q for q in QUOTES if player.placements.get(q.id) != q.phase]


def pick_hint(player: PlayerState, rng) -> Optional[Quote]:
    candidates = unsolved_quotes(player)
    if not candidates:
        return None
    return rng.choice(candidates)


def deadline_ms(room: Room) -> Optional[int]:
    """Moment an active room runs out of time, allowing for the largest time bonus."""
    if not room.start_at:
        return None
    max_bonus = max([p.time_bonus_ms for p in room.players.values()] + [0])
    return room.start_at + room.game_config.time_limit_seconds * 1000 + max_bonus
