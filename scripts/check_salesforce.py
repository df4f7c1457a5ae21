#!/usr/bin/env python3
"""Verify Salesforce credentials and the external-id custom field.

Usage:
    python scripts/check_salesforce.py
    python scripts/check_salesforce.py --field Prolibu_External_Id__c --domain test

Reads SF_* settings from the environment or .env file, logs in, and checks
that the external-id field exists on Opportunity. Prints setup instructions
when it does not.

Exit code 0 if all checks pass, 1 if any fail.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.proposal_sync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.proposal_sync.config import get_settings  # noqa: E402
from src.proposal_sync.crm.salesforce import SalesforceStore  # noqa: E402
from src.proposal_sync.errors import RemoteError  # noqa: E402

FIELD_SETUP_INSTRUCTIONS = """\
The field {field} does not exist on Opportunity. Create it in Salesforce:
  1. Setup -> Object Manager -> Opportunity -> Fields & Relationships -> New
  2. Type: Text, Length: 50
  3. Label: Prolibu External ID
  4. API Name: {field}
  5. Check "Unique" and "External ID"
"""


def print_results(results: list) -> None:
    """Print a formatted table of check results."""
    header = f"{'CHECK':<25} {'STATUS':<10} {'DETAIL'}"
    separator = "-" * 70
    print()
    print(separator)
    print(header)
    print(separator)
    for name, passed, detail in results:
        status = "PASS" if passed else "FAIL"
        print(f"{name:<25} {status:<10} {detail}")
    print(separator)
    print()


async def run_checks(store: SalesforceStore, field: str) -> list:
    results = []

    try:
        session = await store.connect()
    except RemoteError as exc:
        results.append(("Login", False, f"{exc.code}: {exc.message}"))
        return results
    results.append(("Login", True, session.instance_url))

    try:
        exists = await store.check_field(field)
    except RemoteError as exc:
        results.append(("External id field", False, f"{exc.code}: {exc.message}"))
    else:
        detail = field if exists else f"{field} missing"
        results.append(("External id field", exists, detail))
        if not exists:
            print(FIELD_SETUP_INSTRUCTIONS.format(field=field))

    await store.disconnect()
    return results


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Verify the Salesforce connection and external-id field")
    parser.add_argument(
        "--field",
        default=settings.SF_EXTERNAL_ID_FIELD,
        help="External-id field API name on Opportunity",
    )
    parser.add_argument(
        "--domain",
        default=settings.SF_LOGIN_DOMAIN,
        help='Login domain: "login" (production) or "test" (sandbox)',
    )
    args = parser.parse_args()

    missing = settings.missing_salesforce_settings()
    if missing:
        print(f"Error: missing settings: {', '.join(missing)}")
        sys.exit(1)

    store = SalesforceStore(
        username=settings.SF_USERNAME,
        password=settings.SF_PASSWORD,
        security_token=settings.SF_SECURITY_TOKEN,
        domain=args.domain,
        external_id_field=args.field,
        api_version=settings.SF_API_VERSION or None,
        connect_max_retries=settings.SF_CONNECT_MAX_RETRIES,
    )

    results = asyncio.run(run_checks(store, args.field))
    print_results(results)

    all_passed = all(passed for _, passed, _ in results)
    print("All checks passed." if all_passed else "Some checks FAILED.")
    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
