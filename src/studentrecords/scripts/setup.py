"""
Interactive Portal login for the sync service.

Prompts for a staff member's Portal account, exchanges it for a bearer
token and saves the token to ~/.studentrecords/portal_session/ with
owner-only permissions (0700 dir / 0600 file). The password itself is
never written anywhere.

Usage:
    python -m studentrecords setup
    python -m studentrecords.scripts.setup   (direct invocation)

Portal tokens last about two hours; re-run when syncs start answering
"Portal session has expired".
"""
import asyncio
import getpass
import sys

from studentrecords.config import get_settings
from studentrecords.portal.auth import InteractiveSessionProvider, PortalCredentials, TokenStore
from studentrecords.portal.client import PortalGateway
from studentrecords.portal.errors import NotAuthenticated


async def _login(credentials: PortalCredentials, store: TokenStore):
    gateway = PortalGateway.from_settings(get_settings())
    try:
        provider = InteractiveSessionProvider(gateway, store)
        return await provider.authenticate(credentials)
    finally:
        await gateway.aclose()


def run_setup() -> None:
    settings = get_settings()
    store = TokenStore(settings.portal_session_dir)

    print("\nStudent Records — Portal login\n")
    print("Your password will NOT be saved to disk.")
    print(f"The Portal token will be stored in: {store.path}\n")

    if not settings.portal_api_key:
        print("Error: PORTAL_API_KEY is not set.")
        sys.exit(1)

    username = input("Portal username: ").strip()
    if not username:
        print("Error: username cannot be empty.")
        sys.exit(1)

    password = getpass.getpass("Portal password: ")
    if not password:
        print("Error: password cannot be empty.")
        sys.exit(1)

    print("\nLogging in to the Portal...")
    try:
        session = asyncio.run(_login(PortalCredentials(username, password), store))
    except NotAuthenticated as exc:
        print(f"\nLogin failed: {exc}")
        print("Check your username and password and try again.")
        sys.exit(1)

    print(f"\nToken saved to {store.path}")
    print(f"Valid until {session.expires_at.isoformat()} UTC")
    print("When it expires, just re-run:  python -m studentrecords setup\n")


if __name__ == "__main__":
    run_setup()
