"""
Sandbox smoke test: fetch a token, send one STK push, then poll the query API.

Usage:
  MPESA_SMOKE_PHONE=0712345678 python scripts/stk_smoke.py
Reads MPESA_* settings from the environment or .env.
"""
import os
import sys
import time
from decimal import Decimal

from dotenv import load_dotenv

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


def _die(message, code=1):
    print(message)
    sys.exit(code)


def _require_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        _die(f"Missing env var: {name}")
    return value


def main() -> None:
    load_dotenv()
    if (os.getenv("MPESA_ENV") or "sandbox").strip().lower() != "sandbox":
        _die("MPESA_ENV must be 'sandbox' for the smoke test.")

    phone_raw = _require_env("MPESA_SMOKE_PHONE")
    amount = Decimal(os.getenv("MPESA_SMOKE_AMOUNT", "1").strip() or "1")
    polls = int(os.getenv("MPESA_SMOKE_POLLS", "6"))
    delay_s = float(os.getenv("MPESA_SMOKE_POLL_DELAY_S", "10"))

    # imported after load_dotenv so settings see .env values
    from app.errors import PaymentError
    from app.mpesa.client import DarajaClient
    from app.mpesa.config import missing_credentials, mpesa_config
    from app.mpesa.formatting import normalize_phone

    cfg = mpesa_config()
    missing = missing_credentials(cfg)
    if missing:
        _die(f"Missing settings: {', '.join(missing)}")

    client = DarajaClient(cfg)
    try:
        client.tokens.get_access_token()
        print("token ok")
        ack = client.stk_push(phone=normalize_phone(phone_raw, cfg.country_prefix), amount=amount)
    except PaymentError as exc:
        _die(f"stk push failed: {type(exc).__name__}: {exc.message}")

    print(f"stk push accepted checkout_request_id={ack.checkout_request_id}")

    for _ in range(polls):
        time.sleep(delay_s)
        try:
            result = client.query_stk_status(ack.checkout_request_id)
        except PaymentError as exc:
            print(f"query failed: {exc.message}")
            continue
        if result.pending:
            print("still processing")
            continue
        print(f"result_code={result.result_code} result_desc={result.result_desc}")
        return

    _die("No final result before polling gave up.")


if __name__ == "__main__":
    main()
