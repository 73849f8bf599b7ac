"""
Service Rush Simulation Script

Simulates a busy afternoon against a running server: customers at random
tables order concurrently, ask for the bill, and staff confirm payment.
Stock conflicts (HTTP 409) are expected once popular items run out.

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

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 30
TABLE_COUNT = 12
PAYMENT_METHODS = ["PIX", "CREDIT_CARD", "DEBIT_CARD", "CASH"]
OBSERVATIONS = [None, "Sem gelo", "Capricha no limão", "Sem cebola", "Trazer guardanapos"]


def generate_cart(products: list[dict]) -> list[dict]:
    """Random cart drawn from the live menu."""
    available = [p for p in products if p.get("stock", 0) > 0]
    if not available:
        return []
    chosen = random.sample(available, k=min(len(available), random.randint(1, 3)))
    return [{"product": p, "quantity": random.randint(1, 3)} for p in chosen]


# =============================================================================
# CUSTOMER FLOW
# =============================================================================

async def place_order(
    client: httpx.AsyncClient,
    order_num: int,
    products: list[dict],
) -> dict[str, Any]:
    """Send one order from a random table."""
    table_id = random.randint(1, TABLE_COUNT)
    payload = {
        "table_id": table_id,
        "items": generate_cart(products),
        "observation": random.choice(OBSERVATIONS),
    }
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 200:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "table_id": table_id,
                "order_id": data.get("id"),
                "total": data.get("total"),
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "table_id": table_id,
            "status_code": response.status_code,
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "table_id": table_id,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def close_table(client: httpx.AsyncClient, table_id: int) -> int:
    """Customer asks for the bill, staff confirm it. Returns orders paid."""
    method = random.choice(PAYMENT_METHODS)
    await client.post(
        f"{API_BASE_URL}/api/tables/{table_id}/close-request",
        json={"payment_method": method},
    )
    response = await client.post(f"{API_BASE_URL}/api/tables/{table_id}/finalize")
    response.raise_for_status()
    return response.json().get("orders_paid", 0)


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, close_tables: bool = True) -> dict[str, Any]:
    """
    Run the rush simulation.

    Args:
        num_orders: Number of orders to fire concurrently
        close_tables: Close every table that ordered afterwards
    """
    print("=" * 70)
    print("🏖️  SERVICE RUSH SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/api/products")
        response.raise_for_status()
        products = response.json()
        print(f"\n🍹 Menu has {len(products)} products\n")

        tasks = [place_order(client, i + 1, products) for i in range(num_orders)]
        results = await asyncio.gather(*tasks)

        paid = 0
        tables = sorted({r["table_id"] for r in results if r["success"]})
        if close_tables:
            for table_id in tables:
                paid += await close_table(client, table_id)

        report = await client.post(f"{API_BASE_URL}/api/reports/daily", timeout=60.0)

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    conflicts = [r for r in results if r.get("status_code") == 409]
    failed = [r for r in results if not r["success"] and r.get("status_code") != 409]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"📦 Out of stock: {len(conflicts)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r.get("total") or 0 for r in successful)
        print(f"\n📈 Average Response: {avg_time}s")
        print(f"   💰 Total Revenue: R$ {total_revenue:.2f}")

    if close_tables:
        print(f"\n🧾 Tables closed: {len(tables)} ({paid} orders paid)")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']} (table {f['table_id']}): {f.get('error', 'Unknown error')}")

    if report.status_code == 200:
        print("\n" + "=" * 70)
        print(f"📝 DAILY REPORT ({report.json().get('provider')})")
        print("=" * 70)
        print(report.json().get("report"))

    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "conflicts": len(conflicts),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def preflight() -> bool:
    """Check the server answers before firing orders."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"❌ Server unreachable: {e}")
            return False

    if response.status_code != 200:
        print(f"❌ Health check failed: {response.text}")
        return False

    data = response.json()
    print(f"✅ Status: {data.get('status')} (storage: {data.get('storage_mode')})")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Service Rush Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--keep-open", action="store_true", help="Don't close tables afterwards")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    if not asyncio.run(preflight()):
        sys.exit(1)

    asyncio.run(run_simulation(num_orders=args.orders, close_tables=not args.keep_open))
