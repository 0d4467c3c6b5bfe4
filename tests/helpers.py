"""
Shared test doubles: a controllable clock and a storage backend that can be
told to fail writes.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from coop_banking.currency import Currency, Money
from coop_banking.dates import add_months
from coop_banking.storage import InMemoryStorage


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def advance_months(self, months: int) -> None:
        self.now = add_months(self.now, months)


class FailingStorage(InMemoryStorage):
    """InMemoryStorage that raises on writes to an armed table (or record)"""

    def __init__(self):
        super().__init__()
        self.fail_table: Optional[str] = None
        self.fail_record_id: Optional[str] = None

    def arm(self, table: str, record_id: Optional[str] = None) -> None:
        self.fail_table = table
        self.fail_record_id = record_id

    def disarm(self) -> None:
        self.fail_table = None
        self.fail_record_id = None

    def save(self, table, record_id, data):
        if table == self.fail_table and self.fail_record_id in (None, record_id):
            raise RuntimeError(f"simulated write failure on {table}")
        super().save(table, record_id, data)


def php(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.PHP)
