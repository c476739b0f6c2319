#!/usr/bin/env python3
"""
Local Cart Inspector

Prints the persisted local cart (raw blob, parsed lines, totals) for a
storage backend, and optionally wipes it.

Usage:
    python scripts/inspect_cart.py --backend file --path ~/.cartsync
    python scripts/inspect_cart.py --backend redis --key cartsync_cart --clear
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cartsync import config  # noqa: E402
from cartsync.logging import configure_logging  # noqa: E402
from cartsync.cart.models import CartState  # noqa: E402
from cartsync.cart.storage import LocalCartStore, create_backend  # noqa: E402


async def inspect_cart(store: LocalCartStore, clear: bool = False) -> int:
    """Print the persisted cart. Returns a process exit code."""
    print("=== LOCAL CART ===")
    raw = await store.read_raw()
    if not raw:
        print("No cart data found")
    else:
        print(f"Raw data ({len(raw)} bytes): {raw[:500]}")

    # load() wipes corrupt data, so it only runs after the raw dump
    lines = await store.load()
    if raw and not lines:
        print("WARNING: persisted cart was empty, corrupt or invalid")

    state = CartState(lines=tuple(lines))
    for index, line in enumerate(state.lines):
        print(f"  Item {index}: {line.name} ({line.product_id}) qty={line.quantity} price={line.unit_price}")
    print(f"Items: {state.item_count} | Total: {state.total}")

    if clear:
        if await store.clear():
            print("Cart storage cleared")
        else:
            print("ERROR: failed to clear cart storage")
            return 1
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect the persisted local cart")
    default_backend = "redis" if config.CART_STORAGE_BACKEND == "redis" else "file"
    parser.add_argument("--backend", choices=["file", "redis"], default=default_backend)
    parser.add_argument("--path", type=Path, default=config.CART_STORAGE_PATH, help="Directory of the file backend")
    parser.add_argument("--key", default=config.CART_STORAGE_KEY, help="Storage key")
    parser.add_argument("--clear", action="store_true", help="Delete the persisted cart after printing it")
    args = parser.parse_args()
    configure_logging()

    store = LocalCartStore(create_backend(args.backend, args.path.expanduser()), key=args.key)
    return asyncio.run(inspect_cart(store, clear=args.clear))


if __name__ == "__main__":
    sys.exit(main())
