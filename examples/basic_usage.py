#!/usr/bin/env python3
"""
Basic usage example for MDAP.

This example votes on a single arithmetic step, then chains a small
workflow where every step is voted independently.

Requirements:
    - Set OPENAI_API_KEY environment variable

Usage:
    python examples/basic_usage.py
"""

import asyncio
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from mdap import RedFlag, VoteOptions, Workflow, calculate_min_k, vote
from mdap.adapters import RateLimitConfig, RateLimitedAdapter, create_adapter


async def main():
    """Run a voted step and a voted workflow."""

    # Check for API key
    if not os.getenv("OPENAI_API_KEY"):
        print("❌ Error: OPENAI_API_KEY environment variable not set")
        print("   Set it with: export OPENAI_API_KEY=your_key_here")
        return

    print("🗳️ MDAP - voting-based error correction")
    print("=" * 50)

    # A 1000-step task at 99% per-step accuracy needs this margin for 95% overall
    k = calculate_min_k(1000, 0.99, 0.95)
    print(f"\n📐 k for 1000 steps at 99%: {k}")

    adapter = RateLimitedAdapter(
        create_adapter("openai", temperature=0.7, max_tokens=50),
        RateLimitConfig(requests_per_minute=120),
    )
    options = VoteOptions(
        vote={"k": k, "max_samples": 20},
        red_flags=[RedFlag.empty_response(), RedFlag.too_long(50)],
    )

    try:
        # Single step
        print("\n🔍 Voting on: What is 17 * 23?")
        result = await vote(
            lambda prompt: adapter.chat(prompt, system="Reply with the number only."),
            "What is 17 * 23?",
            options,
        )

        print("=" * 50)
        if result.converged:
            print("✅ Converged!")
        else:
            print("⚠️ Did not converge")
        print(f"\n🎯 Winner: {result.winner}")
        print(f"📈 Confidence: {result.confidence:.1%}")
        print(f"🧮 Samples: {result.total_samples} ({result.flagged_samples} flagged)")
        print(f"🗂️ Votes: {result.votes}")

        # Multi-step workflow
        print("\n🔗 Running a two-step workflow...")

        async def capital(country):
            return await adapter.chat(f"Capital of {country}? One word.")

        async def population(city):
            return await adapter.chat(
                f"Rough population of {city.strip()} in millions? Number only."
            )

        flow = await (
            Workflow("geography", options)
            .step("capital", capital)
            .step("population", population)
            .with_retry(max_attempts=2)
            .run("France")
        )

        for step in flow.steps:
            status = "✓" if step.error is None else "✗"
            winner = step.result.winner if step.result else "-"
            print(f"   {status} {step.name}: {winner} ({step.time_ms:.0f}ms)")
        print(f"\n📦 Output: {flow.output}")
        print(f"🧮 Total samples: {flow.total_samples}")

    except Exception as e:
        print(f"❌ Error: {e}")
        raise
    finally:
        await adapter.close()

    print("\n✨ Done!")


if __name__ == "__main__":
    asyncio.run(main())
