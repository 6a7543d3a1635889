#!/usr/bin/env python3
"""
Basic usage example for blobverify.

Runs the full verification flow: admission control, upload, attribute
write, re-verification and availability monitoring.

By default the in-memory backends are used. Set BLOBVERIFY_LIVE=1 (plus
SUI_OWNER_ADDRESS and optionally WALRUS_PUBLISHER_URL /
WALRUS_AGGREGATOR_URLS) to run against Walrus testnet instead.

Usage:
    python examples/basic_usage.py
"""

import asyncio
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from blobverify import (
    BlobVerificationManager,
    FlowOptions,
    InMemoryBalanceOracle,
    InMemoryStorageClient,
    StorageAllocationManager,
    VerificationFlowController,
    VerificationFlowError,
    create_flow_controller,
)


def build_flow() -> VerificationFlowController:
    if os.getenv("BLOBVERIFY_LIVE"):
        return create_flow_controller()

    storage = InMemoryStorageClient(certification_delay=2)
    oracle = InMemoryBalanceOracle(token_balance=5000, storage_fund_balance=1000, used=500, total=5000)
    return VerificationFlowController(
        StorageAllocationManager(oracle),
        BlobVerificationManager(storage),
    )


async def main():
    """Upload and verify a small document."""

    print("🧾 blobverify: upload verification")
    print("=" * 50)

    data = b'{"title": "Quarterly report", "pages": 12}'
    metadata = {"contentType": "application/json", "owner": "reports-team"}

    print(f"\n📦 Payload: {len(data)} bytes")
    print(f"🏷  Metadata: {metadata}")
    print()

    flow = build_flow()

    try:
        result = await flow.execute_verification_flow(
            data,
            metadata,
            FlowOptions(
                duration_days=30,
                wait_for_certification=True,
                wait_timeout=10.0,
                monitor_availability=True,
            ),
        )

        print("=" * 50)
        print("📊 RESULTS")
        print("=" * 50)

        if result.verified:
            print("✅ Blob verified")
        else:
            print("⚠️ Blob stored but verification failed")

        print(f"\n🆔 Blob ID: {result.blob_id}")
        print(f"💰 Available tokens after check: {result.allocation.available_tokens}")
        print(f"📜 Certified: {result.upload.certified} (epoch {result.upload.certified_epoch})")
        print(f"🔁 Certification polls: {result.upload.certification_polls}")
        print(f"🛰  Providers: {result.upload.provider_count}")

        if result.verification:
            print(f"🔍 Content: {result.verification.content_match.value}")
            print(f"🔍 Metadata: {result.verification.metadata_match.value}")
            for mismatch in result.verification.mismatches:
                print(f"   ✗ {mismatch.key}: expected {mismatch.expected!r}, got {mismatch.actual!r}")

        if result.monitoring:
            print(
                f"📡 Monitoring: {'available' if result.monitoring.successful else 'unavailable'} "
                f"after {result.monitoring.attempts_made} attempt(s)"
            )

        print("\n🔐 Checksums:")
        for name, digest in result.upload.checksums.to_hex().items():
            print(f"   {name}: {digest[:32]}...")

    except VerificationFlowError as e:
        print(f"❌ Failed at {e.stage}: {e.cause}")
        if e.retryable:
            print("   (retryable)")
        raise
    finally:
        await flow.close()

    print("\n✨ Done!")


if __name__ == "__main__":
    asyncio.run(main())
