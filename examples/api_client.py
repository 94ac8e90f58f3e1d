#!/usr/bin/env python3
"""
API Client example for MDAP.

This example shows how an agent framework can call the MDAP tool server.

Requirements:
    - MDAP server running (mdap serve --port 8090)

Usage:
    python examples/api_client.py
"""

import asyncio

import httpx

API_BASE_URL = "http://localhost:8090"


async def main():
    """Demonstrate API client usage."""

    print("🗳️ MDAP - API Client Example")
    print("=" * 50)

    async with httpx.AsyncClient(timeout=120) as client:
        # Health check
        print("\n📡 Checking API health...")
        try:
            response = await client.get(f"{API_BASE_URL}/health")
            health = response.json()
            print(f"   Status: {health['status']}")
            print(f"   Version: {health['version']}")
        except httpx.HTTPError as e:
            print(f"❌ API not available: {e}")
            print("   Make sure the server is running: mdap serve --port 8090")
            return

        # Cost estimate
        print("\n📊 Estimating a 10,000 step workflow...")
        response = await client.post(
            f"{API_BASE_URL}/estimate",
            json={"steps": 10000, "success_rate": 0.99},
        )
        if response.status_code == 200:
            result = response.json()
            for line in result["summary"].splitlines():
                print(f"   {line}")
            print(f"   k for 99.9%: {result['k_for_999']}")
        else:
            print(f"   Failed: {response.text}")

        # Validation
        print("\n🔍 Validating a response...")
        response = await client.post(
            f"{API_BASE_URL}/validate",
            json={"response": '{"answer": 42}', "rules": ["invalidJson", "emptyResponse"]},
        )
        result = response.json()
        print(f"   Valid: {result['valid']}")
        for check in result["checks"]:
            print(f"   {'❌' if check['flagged'] else '✅'} {check['rule']}")

        # Reliable execution
        print("\n📤 Executing with voting...")
        response = await client.post(
            f"{API_BASE_URL}/execute",
            json={
                "prompt": "What is 17 * 23? Reply with the number only.",
                "k": 3,
                "red_flags": ["emptyResponse", "tooLong:20"],
            },
        )

        if response.status_code == 200:
            result = response.json()
            print(f"   Winner: {result['winner']}")
            print(f"   Confidence: {result['confidence']:.1%}")
            print(f"   Samples: {result['total_samples']} ({result['flagged_samples']} flagged)")
            print(f"   Cost: ${result['usage']['estimated_cost']:.4f}")
            if result.get("warning"):
                print(f"   ⚠️ {result['warning']}")
        else:
            print(f"   Failed ({response.status_code}): {response.json()['detail']}")

        # Tracker stats
        response = await client.get(f"{API_BASE_URL}/stats")
        stats = response.json()
        print(f"\n📈 Runs: {stats['total_runs']} ({stats['completed']} completed, {stats['failed']} failed)")

    print("\n✨ Done!")


if __name__ == "__main__":
    asyncio.run(main())
