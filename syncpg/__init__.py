"""
syncpg: a blocking PostgreSQL client over psycopg's asyncio driver.

Public surface:
- `Client`, `Transaction`, `TransactionBuilder`, `Statement`, `CancelToken`
- streaming handles `RowIter`, `CopyInWriter`, `CopyOutReader`
- TLS policies `MakeTlsConnector` / `TlsConfig` / `NoTls`
- error types in `syncpg.errors`
"""

from psycopg import IsolationLevel

from syncpg.cancel import CancelToken
from syncpg.client import Client
from syncpg.domain.messages import CommandComplete, SimpleQueryRow
from syncpg.errors import ConnectError, TlsHandshakeError, UnexpectedRowCount
from syncpg.generic import GenericClient
from syncpg.statement import Statement
from syncpg.streams import CopyInWriter, CopyOutReader, RowIter
from syncpg.tls.factory import MakeTlsConnector, NoTls, TlsConfig
from syncpg.transaction import Transaction, TransactionBuilder

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "Client",
    "CommandComplete",
    "ConnectError",
    "CopyInWriter",
    "CopyOutReader",
    "GenericClient",
    "IsolationLevel",
    "MakeTlsConnector",
    "NoTls",
    "RowIter",
    "SimpleQueryRow",
    "Statement",
    "TlsConfig",
    "TlsHandshakeError",
    "Transaction",
    "TransactionBuilder",
    "UnexpectedRowCount",
    "__version__",
]
