from __future__ import annotations

import threading

from api_market.errors import NotFound
from api_market.schemas import AgentProfile


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError("amount must be an int")
    if amount < 0:
        raise ValueError("amount must be non-negative")
    return amount


class AgentAccount:
    """Wallet balance for one agent. Debit is an atomic check-and-subtract."""

    def __init__(self, agent_id: str, balance: int = 0) -> None:
        self.agent_id = agent_id
        self._balance = _check_amount(balance)
        # Reentrant so settlement can hold it across check -> debit -> payment.
        self.lock = threading.RLock()

    def balance(self) -> int:
        return self._balance

    def debit(self, amount: int) -> bool:
        amount = _check_amount(amount)
        with self.lock:
            if self._balance < amount:
                return False
            self._balance -= amount
            return True

    def credit(self, amount: int) -> None:
        amount = _check_amount(amount)
        with self.lock:
            self._balance += amount

    def __repr__(self) -> str:
        return f"AgentAccount(agent_id={self.agent_id!r}, balance={self._balance})"


class AgentRegistry:
    def __init__(self) -> None:
        self._profiles: dict[str, AgentProfile] = {}
        self._accounts: dict[str, AgentAccount] = {}
        self._lock = threading.Lock()

    def register(self, profile: AgentProfile, *, balance: int = 0) -> AgentAccount:
        with self._lock:
            if profile.agent_id in self._profiles:
                raise ValueError(f"duplicate agent_id: {profile.agent_id}")
            account = AgentAccount(profile.agent_id, balance)
            self._profiles[profile.agent_id] = profile
            self._accounts[profile.agent_id] = account
            return account

    def get(self, agent_id: str) -> AgentAccount:
        account = self._accounts.get(agent_id)
        if account is None:
            raise NotFound(f"unknown agent: {agent_id}")
        return account

    def profile(self, agent_id: str) -> AgentProfile:
        profile = self._profiles.get(agent_id)
        if profile is None:
            raise NotFound(f"unknown agent: {agent_id}")
        return profile

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)
