#!/usr/bin/env python3
"""Drive an M-Pesa checkout against a running storefront API from the terminal."""

from __future__ import annotations

import argparse
import sys

from app.client.api import CheckoutApiClient
from app.client.dialog import DialogState, PaymentAttemptView, PaymentDialog
from app.client.poller import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_ATTEMPTS, StatusPoller


def _print_view(view: PaymentAttemptView) -> None:
    print(f"[{view.state.value}] {view.message}")


def run_checkout(
    *,
    base_url: str,
    api_prefix: str,
    phone_number: str,
    amount: int,
    product_name: str,
    timeout_seconds: float,
    interval_seconds: float,
    max_attempts: int,
) -> int:
    with CheckoutApiClient(base_url, api_prefix=api_prefix, timeout=timeout_seconds) as api:
        poller = StatusPoller(api.payment_status, interval_seconds=interval_seconds, max_attempts=max_attempts)
        dialog = PaymentDialog(
            api,
            product_name=product_name,
            amount=amount,
            poller=poller,
            on_change=_print_view,
            auto_dismiss_seconds=0,
        )
        try:
            view = dialog.submit(phone_number)
        except KeyboardInterrupt:
            dialog.close()
            print("\nStopped waiting. The prompt on the phone is still live.")
            return 130
        finally:
            dialog.close()
    return 0 if view.state is DialogState.SUCCESS else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Start an M-Pesa STK push and wait for the result.")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--api-prefix", default="/api/v1", help="API prefix (default: /api/v1)")
    parser.add_argument("--phone", required=True, help="Customer phone, e.g. 0712345678")
    parser.add_argument("--amount", type=int, required=True, help="Amount in whole KSh")
    parser.add_argument("--product", required=True, help="Product name shown on the order")
    parser.add_argument("--timeout", type=float, default=20.0, help="HTTP timeout in seconds")
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_INTERVAL_SECONDS,
        help="Seconds between status checks",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=DEFAULT_MAX_ATTEMPTS,
        help="Status checks before giving up",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    sys.exit(
        run_checkout(
            base_url=args.base_url,
            api_prefix=args.api_prefix,
            phone_number=args.phone,
            amount=args.amount,
            product_name=args.product,
            timeout_seconds=args.timeout,
            interval_seconds=max(0.0, args.interval),
            max_attempts=max(1, args.max_attempts),
        )
    )


if __name__ == "__main__":
    main()
