from app.transactions.repository import PostgresTransactionStore, TransactionStore

_store: TransactionStore | None = None


def get_store() -> TransactionStore:
    global _store
    if _store is None:
        _store = PostgresTransactionStore()
    return _store
