from app.mpesa.client import DarajaClient

_client: DarajaClient | None = None


def get_daraja_client() -> DarajaClient:
    """
    One client per process so the OAuth token cache is shared between
    requests. Config is read on first use.
    """
    global _client
    if _client is None:
        _client = DarajaClient()
    return _client


def reset_daraja_client() -> None:
    global _client
    _client = None
