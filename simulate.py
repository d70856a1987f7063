import asyncio
import json
import uuid

import httpx

# Configuration
URL = "http://localhost:8000"

TURNS = [
    "The forge stirs. **IRON WILL** (100 CP) - The mind cannot be bent. [PASSIVE]\n+25 CP",
    "Heat rolls off the anvil. Corruption: +10. Sanity Erosion: +5.",
    "The Smith reaches for more. **STAR FORGE** (400 CP) - Shapes starlight into steel. [SCALING]",
    "```forge\n" + json.dumps({"characters": [{"stats": {
        "total_cp": 500, "corruption": 20, "sanity": 5,
        "perks": [{"name": "IRON WILL", "cost": 100, "flags": ["PASSIVE"]}],
    }}]}) + "\n```",
]


async def simulate_thread():
    thread_id = f"sim-{uuid.uuid4().hex[:8]}"
    print(f"Connecting to {URL} (thread {thread_id})...")
    async with httpx.AsyncClient(base_url=URL, timeout=30) as client:
        for turn_id, text in enumerate(TURNS, start=1):
            print(f"\n[Client] Sending turn {turn_id}...")
            response = await client.post(
                f"/threads/{thread_id}/turns", json={"text": text, "turn_id": turn_id}
            )
            response.raise_for_status()
            outcome = response.json()
            if outcome["skipped"]:
                print(f"[Server] skipped: {outcome['reason']}")
                continue
            result = outcome["result"]
            print(f"[Server] {result['candidate_kind']}: {result['changes']}")
            if result["warnings"]:
                print(f"[Server] warnings: {result['warnings']}")
            if outcome.get("checkpoint_id"):
                print(f"[Server] auto-checkpoint {outcome['checkpoint_id']}")

        # Replay of the last turn is ignored
        replay = await client.post(
            f"/threads/{thread_id}/turns", json={"text": TURNS[-1], "turn_id": len(TURNS)}
        )
        print(f"\n[Client] Replay -> skipped={replay.json()['skipped']}")

        await client.post(f"/threads/{thread_id}/roll")
        status = await client.get(f"/threads/{thread_id}/status")
        print("\n--- Injection ---")
        print(status.text)

        diff = await client.get(f"/threads/{thread_id}/diff")
        print("\n--- Last turn diff ---")
        print(diff.text)

        archive = await client.get("/archive")
        print(f"\nArchive: {[entry['name'] for entry in archive.json()]}")


if __name__ == "__main__":
    asyncio.run(simulate_thread())
