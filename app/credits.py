import logging
from abc import ABC, abstractmethod
from threading import Lock

from app.job_store import KeyValueStore

logger = logging.getLogger(__name__)


class CreditGate(ABC):
    """Debits a user's balance before a pipeline is admitted."""

    @abstractmethod
    def debit(self, user: str, amount: int) -> bool:
        ...


class KeyValueCreditLedger(CreditGate):
    """Token balances kept in the key-value store under ``tokens:<user>``.

    Debits are not refunded when a pipeline later fails.
    """

    def __init__(self, kv: KeyValueStore, starting_balance: int = 0):
        self._kv = kv
        self._starting_balance = starting_balance
        self._lock = Lock()

    @staticmethod
    def _key(user: str) -> str:
        return f"tokens:{user}"

    def balance(self, user: str) -> int:
        raw = self._kv.get(self._key(user))
        return int(raw) if raw is not None else self._starting_balance

    def credit(self, user: str, amount: int) -> int:
        with self._lock:
            new_balance = self.balance(user) + amount
            self._kv.put(self._key(user), str(new_balance))
        logger.info(f"Credited {amount} tokens to {user}, balance {new_balance}")
        return new_balance

    def debit(self, user: str, amount: int) -> bool:
        with self._lock:
            current = self.balance(user)
            if current < amount:
                logger.info(f"Debit of {amount} refused for {user}, balance {current}")
                return False
            self._kv.put(self._key(user), str(current - amount))
        logger.info(f"Debited {amount} tokens from {user}, balance {current - amount}")
        return True
