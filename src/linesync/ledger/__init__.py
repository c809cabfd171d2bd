from linesync.ledger.client import ConfigLine, CreatedCollection, LedgerClient
from linesync.ledger.http import HttpLedgerClient
from linesync.ledger.memory import InMemoryLedgerClient

__all__ = [
    "ConfigLine",
    "CreatedCollection",
    "HttpLedgerClient",
    "InMemoryLedgerClient",
    "LedgerClient",
]
