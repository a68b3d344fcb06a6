"""
Rush Hour Simulation Script

Fires concurrent orders at a running server, checks that every call number
handed out today is unique, then walks one order through the kitchen.
Run from project root (server running, catalog seeded):
    python scripts/simulate.py --orders 30
"""

import argparse
import asyncio
import random
import sys
import time
from collections import Counter
from datetime import datetime
from typing import Any

import httpx

API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 30


def generate_order_payload(menu: list[dict[str, Any]]) -> dict[str, Any]:
    """One to three dishes, each a base item with a few random modifiers."""
    bases = [m for m in menu if m["type"] == "BASE_ITEM"]
    modifiers = [m for m in menu if m["type"] in ("TOPPING", "DISCOUNT")]

    groups = []
    for _ in range(random.randint(1, 3)):
        items = [{"merchandiseId": random.choice(bases)["id"]}]
        for modifier in random.sample(modifiers, k=random.randint(0, min(2, len(modifiers)))):
            items.append({"merchandiseId": modifier["id"]})
        groups.append({"items": items})
    return {"groups": groups}


async def send_order(
    client: httpx.AsyncClient,
    menu: list[dict[str, Any]],
    order_num: int,
) -> dict[str, Any]:
    """Send one order and time it."""
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/orders",
            json=generate_order_payload(menu),
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data["id"],
                "call_number": data["call_number"],
                "total": data["total"],
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": elapsed,
        }


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """Run the concurrent order burst and report call number integrity."""
    print("=" * 70)
    print("RUSH HOUR SIMULATION - CONCURRENT ORDERS")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        menu_response = await client.get(f"{API_BASE_URL}/merchandise", params={"available": "true"})
        menu_response.raise_for_status()
        menu = menu_response.json()
        if not any(m["type"] == "BASE_ITEM" for m in menu):
            print("No base items on the menu. Run: python scripts/seed.py")
            return {"total": num_orders, "successful": 0, "failed": num_orders, "results": []}

        tasks = [send_order(client, menu, i + 1) for i in range(num_orders)]
        results = await asyncio.gather(*tasks)

        today_response = await client.get(f"{API_BASE_URL}/orders/today")
        today_response.raise_for_status()
        todays_numbers = [o["call_number"] for o in today_response.json()]

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"\nSuccessful Orders: {len(successful)}/{num_orders}")
    print(f"Failed Orders: {len(failed)}/{num_orders}")
    print(f"Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\nPerformance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   Total Billed: {sum(r['total'] for r in successful)}")

    duplicates = [n for n, count in Counter(todays_numbers).items() if count > 1]
    print("\nCall Numbers:")
    print(f"   Issued today: {len(todays_numbers)}")
    if duplicates:
        print(f"   DUPLICATES: {sorted(duplicates)}")
    else:
        print("   No duplicates")
    if todays_numbers and sorted(todays_numbers) != list(range(1, len(todays_numbers) + 1)):
        print("   Gaps found in today's sequence")

    if failed:
        print("\nFailed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "duplicates": duplicates,
        "total_time": total_time,
        "results": results,
    }


async def walk_order_lifecycle(order_id: str) -> bool:
    """Pay one order, then prepare and finish every dish."""
    print("\n" + "=" * 70)
    print("ORDER LIFECYCLE")
    print("=" * 70)

    async with httpx.AsyncClient(base_url=API_BASE_URL) as client:
        response = await client.post(f"/orders/{order_id}/pay")
        if response.status_code != 200:
            print(f"   Pay failed: {response.text}")
            return False
        order = response.json()
        print(f"   Order #{order['call_number']}: {order['status']}")

        for group in order["groups"]:
            for action in ("prepare", "ready"):
                response = await client.post(f"/order-item-groups/{group['id']}/{action}")
                if response.status_code != 200:
                    print(f"   {action} failed for group {group['id']}: {response.text}")
                    return False
            print(f"   Group {group['id'][:8]} ready")

        order = (await client.get(f"/orders/{order_id}")).json()
        print(f"   Final status: {order['status']}")
        return order["status"] == "READY"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rush Hour Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--skip-lifecycle", action="store_true", help="Only fire orders")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(args.orders))

    if not args.skip_lifecycle:
        first = next((r for r in summary["results"] if r["success"]), None)
        if first is not None and not asyncio.run(walk_order_lifecycle(first["order_id"])):
            sys.exit(1)

    if summary.get("duplicates"):
        sys.exit(1)
