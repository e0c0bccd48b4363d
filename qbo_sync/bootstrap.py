"""Bootstrap — exchange a one-time authorization code for the first token pair.

Usage:
  1. Get an authorization code and realm id from the QuickBooks OAuth Playground
  2. Put them in .env as QB_AUTHORIZATION_CODE / QB_REALM_ID (or pass --code / --realm-id)
  3. Run: qbo-sync-bootstrap
"""

import argparse
import asyncio
import sys
from typing import Callable, Optional

import httpx

from qbo_sync.config import Settings, configure_logging, settings as default_settings
from qbo_sync.database import async_session, engine, init_db, utcnow
from qbo_sync.errors import ConfigError, TokenExchangeError
from qbo_sync.quickbooks.oauth import exchange_code_for_tokens
from qbo_sync.repositories.token_store import TokenStore

PLAYGROUND_URL = "https://developer.intuit.com/app/developer/playground"


def ask_overwrite(realm_id: str) -> bool:
    answer = input(f"Tokens already exist for realm {realm_id}. Overwrite existing tokens? (yes/no): ")
    return answer.strip().lower() == "yes"


async def bootstrap(
    code: str,
    realm_id: str,
    http_client: httpx.AsyncClient,
    tokens: TokenStore,
    confirm: Optional[Callable[[str], bool]] = ask_overwrite,
    settings: Settings = default_settings,
) -> bool:
    """Exchange ``code`` and store the tokens. Returns False if the user declined to overwrite."""
    if await tokens.get(realm_id) is not None:
        print(f"[WARN] Tokens already exist for realm: {realm_id}")
        # input() blocks, so keep the prompt off the event loop
        if confirm is not None and not await asyncio.to_thread(confirm, realm_id):
            print("Bootstrap cancelled")
            return False

    print("Exchanging authorization code for tokens...")
    result = await exchange_code_for_tokens(http_client, code, realm_id, settings=settings)

    now = utcnow()
    await tokens.save(
        realm_id=realm_id,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_at=result.expires_at(now),
        refresh_token_expires_at=result.refresh_token_expires_at(now),
    )

    print("[OK] Bootstrap successful")
    print(f"  Tokens saved for realm: {realm_id}")
    print(f"  Access token expires in: {result.expires_in // 60} minutes")
    if result.refresh_token_expires_in is not None:
        print(f"  Refresh token expires in: {result.refresh_token_expires_in // 86400} days")
    print("\nNext steps:")
    print("  1. Remove QB_AUTHORIZATION_CODE from .env (it can only be used once)")
    print("  2. Start the sync service: qbo-sync-worker")
    return True


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Exchange a QuickBooks authorization code for tokens")
    parser.add_argument("--code", default=default_settings.qb_authorization_code,
                        help="authorization code (default: QB_AUTHORIZATION_CODE)")
    parser.add_argument("--realm-id", default=default_settings.qb_realm_id,
                        help="company realm id (default: QB_REALM_ID)")
    parser.add_argument("--yes", action="store_true", help="overwrite existing tokens without asking")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    await init_db(engine)
    print("[OK] Database ready")

    try:
        async with httpx.AsyncClient(timeout=default_settings.http_timeout_seconds) as http_client:
            await bootstrap(
                args.code,
                args.realm_id,
                http_client,
                TokenStore(async_session),
                confirm=None if args.yes else ask_overwrite,
            )
    except TokenExchangeError as e:
        print(f"[FAIL] Bootstrap failed: {e}")
        print("Common issues:")
        print("  - Authorization code already used (get a new one)")
        print("  - Code expired (they expire after 10 minutes)")
        print("  - Wrong QB_CLIENT_ID or QB_CLIENT_SECRET")
        print("  - QB_REDIRECT_URI does not match the one used to get the code")
        return 1
    finally:
        await engine.dispose()
    return 0


def main(argv=None):
    args = parse_args(argv)
    configure_logging()
    print("=" * 60)
    print("QuickBooks Bootstrap")
    print("=" * 60)

    try:
        default_settings.validate_required()
    except ConfigError as e:
        print(f"[FAIL] {e}")
        sys.exit(1)

    if not args.code or not args.realm_id:
        print("[FAIL] Missing authorization code or realm id")
        print("Please add to your .env file:")
        print("  QB_AUTHORIZATION_CODE=your_authorization_code")
        print("  QB_REALM_ID=your_realm_id")
        print(f"\nGet these from the QuickBooks OAuth Playground:\n  {PLAYGROUND_URL}")
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
