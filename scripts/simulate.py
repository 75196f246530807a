"""
Load Simulation Script

Fires concurrent orders at a running server to watch the receipt path and
the follow-up scheduler under load. Start the server in development mode
(mock channel) first.

Install with `pip install -e .[scripts]`, then run from project root:
    python scripts/simulate.py --orders 50
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

API_BASE_URL = "http://localhost:3000"
TOTAL_ORDERS = 50

FIRST_NAMES = ["Ana", "Bruno", "Carla", "Diego", "Eduarda", "Felipe", "Gabriela", "Heitor", "Isabela", "João"]
STREETS = ["Rua das Flores", "Av. Paulista", "Rua Augusta", "Rua Oscar Freire", "Av. Brasil"]
REFERENCES = [None, "Portão azul", "Ao lado da padaria", "Casa dos fundos", "Bloco B"]
MENU_ITEMS = [
    {"nome": "X-Burger", "preco": "22.90"},
    {"nome": "X-Bacon", "preco": "26.90"},
    {"nome": "X-Salada", "preco": "24.50"},
    {"nome": "Batata Frita", "preco": "12.00"},
    {"nome": "Onion Rings", "preco": "14.00"},
    {"nome": "Refrigerante Lata", "preco": "6.00"},
]
NOTES = [None, None, "sem cebola", "ponto da carne bem passado", "sem sal"]


def random_phone() -> str:
    return f"(11) 9{random.randint(1000, 9999)}-{random.randint(1000, 9999)}"


def generate_cart() -> list[dict]:
    cart = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 4)):
        line = dict(item, quantidade=random.randint(1, 3))
        note = random.choice(NOTES)
        if note:
            line["observacao"] = note
        cart.append(line)
    return cart


def generate_order_payload(phone: str) -> dict[str, Any]:
    """Body of POST /api/criar-pedido with a random customer and cart."""
    payment = random.choice(["Dinheiro", "Cartão", "Pix"])
    payload = {
        "cliente": {
            "nome": random.choice(FIRST_NAMES),
            "telefoneFormatado": phone,
            "endereco": f"{random.choice(STREETS)}, {random.randint(1, 999)}",
            "referencia": random.choice(REFERENCES),
        },
        "carrinho": generate_cart(),
        "pagamento": payment,
    }
    if payment == "Dinheiro":
        payload["troco"] = random.choice(["50", "100,00", "200"])
    return payload


async def send_order(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    """Identify the customer, then place an order, like the web form does."""
    phone = random_phone()
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/identificar-cliente",
            json={"telefone": phone},
            timeout=30.0,
        )
        if response.status_code != 200:
            return {
                "order_num": order_num,
                "success": False,
                "error": response.json().get("message", response.text[:100]),
                "time": round(time.time() - start_time, 3),
            }

        response = await client.post(
            f"{API_BASE_URL}/api/criar-pedido",
            json=generate_order_payload(phone),
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 200:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data.get("pedidoId"),
                "total": float(data.get("total", 0)),
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.json().get("message", response.text[:100]),
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 LOAD SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        results = await asyncio.gather(*(send_order(client, i + 1) for i in range(num_orders)))
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r["total"] for r in successful)
        print("\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Total Revenue: R$ {total_revenue:.2f}")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 NEXT STEPS")
    print("=" * 70)
    print("1. Watch the server log: one confirmation ~30s and one dispatch ~30min per order")
    print(f"2. GET {API_BASE_URL}/health shows the pending notification count")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def preflight() -> bool:
    """Health and channel checks before the load run."""
    async with httpx.AsyncClient() as client:
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Database: {data.get('database')}")
        print(f"   Channel: {data.get('channel')}")

        print("\n2️⃣ Channel Status...")
        response = await client.get(f"{API_BASE_URL}/api/channel/status")
        status = response.json()
        if not status.get("ready"):
            print(f"   ❌ Channel not ready: {status.get('state')}")
            return False
        print(f"   ✅ {status.get('provider')} channel ready")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    parser.add_argument("--skip-checks", action="store_true", help="Skip preflight checks")
    args = parser.parse_args()
    API_BASE_URL = args.url

    if not args.skip_checks and not asyncio.run(preflight()):
        print("\n❌ Preflight checks failed. Is the server running in development mode?")
        sys.exit(1)

    asyncio.run(run_simulation(args.orders))
