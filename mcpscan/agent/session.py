"""
Per-process agent state.

One AgentSession is created at startup and handed to the periodic loops and
the push handler; every mutation goes through its lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mcpscan.protocol import AgentStatus


class RegistrationState(str, Enum):
    UNREGISTERED = "Unregistered"
    REGISTERING = "Registering"
    REGISTERED = "Registered"


@dataclass
class AgentSession:
    agent_id: Optional[str] = None
    registration: RegistrationState = RegistrationState.UNREGISTERED
    status: AgentStatus = AgentStatus.IDLE
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_registered(self) -> bool:
        with self._lock:
            return self.registration == RegistrationState.REGISTERED and bool(self.agent_id)

    def begin_registration(self) -> None:
        with self._lock:
            self.registration = RegistrationState.REGISTERING

    def registered(self, agent_id: str) -> None:
        with self._lock:
            self.agent_id = agent_id
            self.registration = RegistrationState.REGISTERED
            self.status = AgentStatus.IDLE

    def registration_failed(self) -> None:
        with self._lock:
            self.registration = RegistrationState.UNREGISTERED

    def set_status(self, status: AgentStatus) -> None:
        with self._lock:
            self.status = status

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "agentId": self.agent_id,
                "registration": self.registration.value,
                "status": self.status.value,
            }
