"""Registry lock marker entity."""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass, field


def new_holder_id() -> str:
    """Identify a lock holder by process and a random token."""
    return f"{os.getpid()}:{uuid.uuid4().hex}"


@dataclass
class LockMarker:
    """Contents of the presence-based lock marker file."""
    holder: str = field(default_factory=new_holder_id)
    acquired_at: float = field(default_factory=time.time)  # Epoch seconds

    def age_ms(self, now: float | None = None) -> float:
        return ((now if now is not None else time.time()) - self.acquired_at) * 1000

    def dumps(self) -> str:
        return json.dumps({"holder": self.holder, "acquiredAt": self.acquired_at})

    @classmethod
    def loads(cls, raw: str) -> LockMarker:
        data = json.loads(raw)
        return cls(holder=str(data["holder"]), acquired_at=float(data["acquiredAt"]))
