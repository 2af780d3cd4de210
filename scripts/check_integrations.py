#!/usr/bin/env python3
"""
Check Integrations Script

Diagnoses provider connections by:
1. Listing integrations (optionally for one user)
2. Showing token presence and expiry (without exposing tokens)
3. Showing the most recent sync attempt for each integration
4. Optionally failing abandoned in-progress syncs

Usage:
    python3 scripts/check_integrations.py [user_id] [--reap]
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Optional
from uuid import UUID

from dotenv import load_dotenv
from sqlalchemy import select

# Add the project root to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from coachsync.db import AsyncSessionLocal, as_utc, utcnow  # noqa: E402
from coachsync.models.integration import Integration  # noqa: E402
from coachsync.services.integration_service import IntegrationService  # noqa: E402
from coachsync.services.stale_sync_reaper import StaleSyncReaper  # noqa: E402

load_dotenv()


async def check_integrations(user_id: Optional[str] = None) -> None:
    """Print every integration with its token and last sync state."""

    print("🔍 Checking Integrations")
    print("=" * 50)

    async with AsyncSessionLocal() as session:
        stmt = select(Integration).order_by(Integration.user_id, Integration.provider)
        if user_id:
            stmt = stmt.where(Integration.user_id == UUID(user_id))

        result = await session.execute(stmt)
        integrations = result.scalars().all()

        if not integrations:
            print("❌ No integrations found!")
            if user_id:
                print(f"   User ID: {user_id}")
            print("\n💡 To connect a provider:")
            print("   1. POST /api/integrations/{user_id}/authorize with {\"type\": \"strava\"}")
            print("   2. Complete the provider consent screen")
            print("   3. POST /api/integrations/oauth/callback?user_id=... with the code and state")
            return

        print(f"✅ Found {len(integrations)} integration(s):\n")
        service = IntegrationService(session)

        for i, integration in enumerate(integrations, 1):
            print(f"📋 Integration {i}:")
            print(f"   ID: {integration.id}")
            print(f"   User ID: {integration.user_id}")
            print(f"   Provider: {integration.provider}")
            print(f"   External user: {integration.external_user_id}")
            print(f"   Active: {'✅' if integration.is_active else '❌'}")
            print(f"   Connected: {integration.connected_at}")
            print(f"   Last Sync: {integration.last_sync_at or 'Never'}")
            print(f"   Has Refresh Token: {'✅' if integration.refresh_token else '❌'}")

            expires_at = as_utc(integration.token_expires_at)
            if expires_at is None:
                print("   Token Expiry: unknown")
            elif expires_at <= utcnow():
                print(f"   Token Expiry: ⚠️ expired at {expires_at} (refreshed on next sync)")
            else:
                print(f"   Token Expiry: {expires_at}")

            history = await service.get_sync_history(integration.id, limit=1)
            if history:
                latest = history[0]
                print(f"   Latest Sync: {latest.status} at {latest.started_at}")
                if latest.error_message:
                    print(f"   Error: {latest.error_message}")
            else:
                print("   Latest Sync: none")
            print()


async def reap_stale_syncs() -> None:
    failed = await StaleSyncReaper().run_once()
    print(f"🧹 Marked {failed} abandoned sync(s) as failed")


async def main() -> None:
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if "--reap" in sys.argv[1:]:
        await reap_stale_syncs()
    await check_integrations(args[0] if args else None)


if __name__ == "__main__":
    asyncio.run(main())
