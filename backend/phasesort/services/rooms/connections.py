from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class Session:
    """What a single open connection is allowed to do, and where."""
    sid: str
    role: Optional[str] = None  # 'gm' or 'player' once attached
    room_code: Optional[str] = None
    identity: Optional[str] = None

    @property
    def is_gm(self) -> bool:
        return self.role == 'gm'


class ConnectionDirectory:
    """Maps live connection ids to their Session."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def open(self, sid: str) -> Session:
        session = self._sessions.get(sid)
        if session is None:
            session = Session(sid=sid)
            self._sessions[sid] = session
        return session

    def get(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)

    def close(self, sid: str) -> Optional[Session]:
        return self._sessions.pop(sid, None)

    def __len__(self):
        return len(self._sessions)
