#!/usr/bin/env python3
"""
Dev helper: send a test quote request to the local Bedoui backend.

Builds a sample storefront quote (or loads one from a JSON file) and POST-s
it to /send-quote with the x-api-key header.

Usage
-----
# Basic: sample quote, targeting localhost:8000
python scripts/send_test_quote.py

# Send a quote body from a file
python scripts/send_test_quote.py --file quote.json

# Send the same body twice to check duplicate suppression
python scripts/send_test_quote.py --repeat 2

# Target a different backend URL
python scripts/send_test_quote.py --url https://backend-bedoui.onrender.com

Environment / .env
------------------
API_KEY         Shared API key (required). Falls back to VITE_API_KEY.

The script reads these from a .env file in the project root if present
(it parses the file directly, without importing the application).
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx


# ---------------------------------------------------------------------------
# .env loader
# ---------------------------------------------------------------------------

def _load_dotenv(path: Path) -> None:
    """
    Parse a .env file and set variables in os.environ.

    Variables already present in the environment are left untouched.
    """
    if not path.exists():
        return
    with path.open() as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def _resolve_api_key() -> str:
    return (os.getenv("API_KEY") or os.getenv("VITE_API_KEY") or "").strip()


# ---------------------------------------------------------------------------
# Sample quote
# ---------------------------------------------------------------------------

def _sample_quote(name: str, email: str) -> dict:
    """Return a quote body shaped like the storefront checkout payload."""
    return {
        "name": name,
        "email": email,
        "phone": "+216 20 000 000",
        "company": "Test SARL",
        "message": "Test quote sent from scripts/send_test_quote.py",
        "products": [
            {
                "product": {"id": "tr-50", "name": "Transformateur 50 kVA", "price": 4200},
                "quantity": 1,
            },
            {
                "product": {"id": "cb-16", "name": "Câble 16 mm²", "price": "12.5"},
                "quantity": 40,
            },
        ],
    }


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status in (200, 202) else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2, ensure_ascii=False))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    _load_dotenv(project_root / ".env")
    _load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_quote.py",
        description=textwrap.dedent("""\
            Send a test quote request to the Bedoui backend.

            Reads API_KEY (or VITE_API_KEY) from the environment or a .env
            file in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_quote.py
              python scripts/send_test_quote.py --file quote.json
              python scripts/send_test_quote.py --repeat 2
              python scripts/send_test_quote.py --url http://localhost:8000
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--file",
        default=None,
        metavar="PATH",
        help="JSON file holding the quote body. A sample quote is used if omitted.",
    )
    parser.add_argument("--name", default="Client Test", help="Customer name for the sample quote")
    parser.add_argument(
        "--email",
        default="client@example.com",
        help="Customer email for the sample quote (default: client@example.com)",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        metavar="KEY",
        help="Override the API key. Defaults to API_KEY / VITE_API_KEY env var.",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Send the same body N times (default: 1)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the quote JSON without sending it.",
    )

    args = parser.parse_args()

    api_key = args.api_key or _resolve_api_key()
    if not api_key and not args.dry_run:
        print(
            "ERROR: No API key found.\n"
            "Set API_KEY in your environment or .env file, or pass --api-key.",
            file=sys.stderr,
        )
        return 1

    if args.file:
        file_path = Path(args.file)
        if not file_path.exists():
            print(f"ERROR: File not found: {file_path}", file=sys.stderr)
            return 1
        payload = json.loads(file_path.read_text(encoding="utf-8"))
        print(f"Loaded quote body from {file_path}")
    else:
        payload = _sample_quote(args.name, args.email)

    endpoint = f"{args.url.rstrip('/')}/send-quote"

    print(f"\nEndpoint : {endpoint}")
    print(f"Customer : {payload.get('name')} <{payload.get('email')}>")
    print(f"Products : {len(payload.get('products') or [])} line(s)")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    exit_code = 0
    with httpx.Client(timeout=30) as client:
        for attempt in range(1, args.repeat + 1):
            if args.repeat > 1:
                print(f"\n--- Request {attempt}/{args.repeat} ---")
            try:
                response = client.post(endpoint, json=payload, headers={"x-api-key": api_key})
            except httpx.HTTPError as e:
                print(f"\n[FAIL] Request error: {e}", file=sys.stderr)
                return 1
            _print_response(response)
            if response.status_code >= 400:
                exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
