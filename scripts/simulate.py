"""
Dinner Service Simulation Script

Drives a running Tableside API through a busy service: tables are
provisioned, guests order concurrently, the kitchen walks orders through
the lifecycle and staff turn the tables over.
Run from project root: python scripts/simulate.py

Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
RESTAURANT_ID = "restaurant-123"
TOTAL_TABLES = 8

MENU_ITEMS = [
    {"item_id": "paneer-tikka", "name": "Paneer Tikka", "unit_price": 150.0, "kind": "VEG"},
    {"item_id": "chicken-biryani", "name": "Chicken Biryani", "unit_price": 220.0, "kind": "NON_VEG"},
    {"item_id": "dal-makhani", "name": "Dal Makhani", "unit_price": 140.0, "kind": "VEG"},
    {"item_id": "butter-naan", "name": "Butter Naan", "unit_price": 40.0, "kind": "VEG"},
    {"item_id": "gulab-jamun", "name": "Gulab Jamun", "unit_price": 80.0, "kind": "VEG"},
    {"item_id": "masala-chai", "name": "Masala Chai", "unit_price": 30.0, "kind": "VEG"},
]

# Kitchen flow, with an occasional bill request before finishing
LIFECYCLE = ["PREPARING", "READY", "SERVED"]


def generate_random_items() -> list[dict]:
    """Generate a random cart."""
    picks = random.sample(MENU_ITEMS, random.randint(1, 4))
    return [dict(item, quantity=random.randint(1, 3)) for item in picks]


async def serve_table(
    client: httpx.AsyncClient,
    table_number: int
) -> dict[str, Any]:
    """Seat a party, walk its order through the kitchen and settle the bill."""
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/restaurants/{RESTAURANT_ID}/orders",
            json={"table_number": table_number, "items": generate_random_items()},
            timeout=30.0
        )
        if response.status_code != 201:
            return {
                "table": table_number,
                "success": False,
                "error": response.text[:100],
                "time": round(time.time() - start_time, 3),
            }
        order = response.json()

        steps = list(LIFECYCLE)
        if random.random() < 0.1:
            steps = ["CANCELLED"]
        elif random.random() < 0.5:
            steps.append("BILL_REQUESTED")
        if steps[-1] != "CANCELLED":
            steps.append("FINISHED")

        for status in steps:
            await asyncio.sleep(random.uniform(0.05, 0.3))
            response = await client.post(
                f"{API_BASE_URL}/api/orders/{order['id']}/status",
                json={"status": status},
                timeout=30.0
            )
            if response.status_code != 200:
                return {
                    "table": table_number,
                    "success": False,
                    "error": f"{status}: {response.text[:80]}",
                    "time": round(time.time() - start_time, 3),
                }

        return {
            "table": table_number,
            "success": True,
            "order_id": order["id"],
            "total": order["total"] if steps[-1] == "FINISHED" else 0.0,
            "final_status": steps[-1],
            "time": round(time.time() - start_time, 3),
        }
    except Exception as e:
        return {
            "table": table_number,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_simulation(num_tables: int = TOTAL_TABLES, rounds: int = 3) -> dict[str, Any]:
    """
    Run the dinner service simulation.

    Args:
        num_tables: Number of tables provisioned and served per round
        rounds: How many times every table turns over
    """
    print("=" * 70)
    print("🍽️  DINNER SERVICE SIMULATION")
    print("=" * 70)
    print(f"🪑 Tables: {num_tables}")
    print(f"🔁 Rounds: {rounds}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    results = []
    start_time = time.time()

    async with httpx.AsyncClient() as client:
        response = await client.post(
            f"{API_BASE_URL}/api/restaurants/{RESTAURANT_ID}/tables/materialize",
            json={"table_numbers": list(range(1, num_tables + 1))},
        )
        response.raise_for_status()
        print(f"\n✅ {response.json()['total']} tables materialized")

        for round_num in range(1, rounds + 1):
            print(f"\n🚀 Round {round_num}: seating every table...")
            tasks = [serve_table(client, n) for n in range(1, num_tables + 1)]
            results.extend(await asyncio.gather(*tasks))

            # Staff release any table still held
            tables = (await client.get(f"{API_BASE_URL}/api/tables")).json()["tables"]
            for table in tables:
                if table["status"] != "available":
                    await client.post(f"{API_BASE_URL}/api/tables/{table['tableNumber']}/available")

        sweep = (await client.post(f"{API_BASE_URL}/api/tables/sweep")).json()
        summary = (await client.get(f"{API_BASE_URL}/api/tables/summary")).json()

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Sessions: {len(successful)}/{len(results)}")
    print(f"❌ Failed Sessions: {len(failed)}/{len(results)}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        cancelled = len([r for r in successful if r["final_status"] == "CANCELLED"])
        revenue = sum(r["total"] for r in successful)
        print(f"\n📈 Service Metrics:")
        print(f"   Cancelled: {cancelled}")
        print(f"   Slowest Session: {max(r['time'] for r in successful)}s")
        print(f"   💰 Revenue Finished: {revenue:.2f}")

    if failed:
        print(f"\n⚠️  Failed Session Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Table {f['table']}: {f.get('error', 'Unknown error')}")

    print(f"\n🧹 Final sweep: {len(sweep['tables_reset'])} reset, {len(sweep['orders_closed'])} closed")
    print(f"🪑 Tables by status: {summary['by_status']}")
    print("=" * 70)

    return {
        "total": len(results),
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    """Pre-flight health check."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"❌ API unreachable: {e}")
            return False
    if response.status_code != 200:
        print(f"❌ Health check failed: {response.text}")
        return False
    data = response.json()
    print(f"✅ Status: {data.get('status')} (store: {data.get('store')}, sweeps: {data.get('sweeps')})")
    return data.get("status") == "operational"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Dinner Service Simulation")
    parser.add_argument("--tables", type=int, default=TOTAL_TABLES, help="Number of tables")
    parser.add_argument("--rounds", type=int, default=3, help="Table turnovers per table")
    args = parser.parse_args()

    if not asyncio.run(check_health()):
        sys.exit(1)

    asyncio.run(run_simulation(num_tables=args.tables, rounds=args.rounds))
