"""
Storage boundary for the settlement core.

Every state change goes through Store.transact: a list of conditional writes
applied all-or-nothing. A failed condition raises ConditionFailed with the
index of the offending write so callers can tell which guard lost.
"""
import copy
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# Logical table -> (partition key, [sort key])
KEY_SCHEMA = {
    'projects': ('projectId',),
    'project_history': ('projectId', 'sequence'),
    'revisions': ('projectId', 'revisionNumber'),
    'wallets': ('walletId',),
    'transactions': ('walletId', 'sequence'),
    'payouts': ('payoutId',),
    'counters': ('counterName',),
}

# (logical table, attribute) -> GSI name
INDEXES = {
    ('projects', 'status'): 'StatusIndex',
    ('payouts', 'walletId'): 'WalletIndex',
}


class ConditionFailed(Exception):
    """A conditional write inside a transaction did not hold."""

    def __init__(self, index: Optional[int] = None, table: Optional[str] = None):
        super().__init__(f'Condition failed on write {index} ({table})')
        self.index = index
        self.table = table


@dataclass
class Put:
    """Insert a new item; fails if an item with the same key already exists."""
    table: str
    item: Dict[str, Any]


@dataclass
class Update:
    """
    Set attributes on an existing item.

    `expected` maps attribute -> required current value; None means the
    attribute must be absent or null.
    """
    table: str
    key: Dict[str, Any]
    values: Dict[str, Any]
    expected: Dict[str, Any] = field(default_factory=dict)


def key_of(table: str, item: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the primary key of an item."""
    return {name: item[name] for name in KEY_SCHEMA[table]}


class Store:
    """Interface every storage backend implements."""

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(self, table: str, partition_value: Any) -> List[Dict[str, Any]]:
        """All items sharing a partition key, ordered by sort key."""
        raise NotImplementedError

    def query_index(self, table: str, attribute: str, value: Any) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def transact(self, writes: Sequence) -> None:
        raise NotImplementedError

    def increment(self, table: str, key: Dict[str, Any], attribute: str, amount: int = 1) -> int:
        """Atomically add to a numeric attribute and return the new value."""
        raise NotImplementedError

    def put(self, table: str, item: Dict[str, Any]) -> None:
        self.transact([Put(table, item)])


class MemoryStore(Store):
    """
    In-process store. A single lock makes the condition check and the apply
    of a transaction one atomic step.
    """

    def __init__(self):
        self._tables = defaultdict(dict)
        self._lock = threading.Lock()

    @staticmethod
    def _key(table: str, key: Dict[str, Any]) -> tuple:
        return tuple(key[name] for name in KEY_SCHEMA[table])

    def get(self, table, key):
        with self._lock:
            item = self._tables[table].get(self._key(table, key))
            return copy.deepcopy(item)

    def query(self, table, partition_value):
        schema = KEY_SCHEMA[table]
        with self._lock:
            items = [copy.deepcopy(i) for i in self._tables[table].values() if i[schema[0]] == partition_value]
        if len(schema) > 1:
            items.sort(key=lambda i: i[schema[1]])
        return items

    def query_index(self, table, attribute, value):
        with self._lock:
            return [copy.deepcopy(i) for i in self._tables[table].values() if i.get(attribute) == value]

    def transact(self, writes):
        with self._lock:
            for index, write in enumerate(writes):
                if not self._holds(write):
                    raise ConditionFailed(index, write.table)
            for write in writes:
                self._apply(write)

    def increment(self, table, key, attribute, amount=1):
        with self._lock:
            item = self._tables[table].setdefault(self._key(table, key), dict(key))
            item[attribute] = item.get(attribute, 0) + amount
            return item[attribute]

    def _holds(self, write) -> bool:
        if isinstance(write, Put):
            return self._key(write.table, key_of(write.table, write.item)) not in self._tables[write.table]
        current = self._tables[write.table].get(self._key(write.table, write.key))
        if current is None:
            return False
        for attribute, expected in write.expected.items():
            if current.get(attribute) != expected:
                return False
        return True

    def _apply(self, write) -> None:
        if isinstance(write, Put):
            key = self._key(write.table, key_of(write.table, write.item))
            self._tables[write.table][key] = copy.deepcopy(write.item)
        else:
            self._tables[write.table][self._key(write.table, write.key)].update(copy.deepcopy(write.values))
