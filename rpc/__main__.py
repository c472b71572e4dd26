"""Command line interface for checking RPC connectivity"""
import sys

from adapters.factory import rpc_url_for
from config import settings_conf
from . import SolanaRPC, NodeConnectionError, SolanaRPCError


def check_rpc():
    """Check the configured Solana node responds"""
    network = settings_conf['solana_network']
    url = rpc_url_for(settings_conf)
    client = SolanaRPC(url)

    print(f"\nChecking {network} node at {url}")
    print("-" * 50)
    try:
        print(f"  Health: {client.getHealth()}")
        print(f"  Slot: {client.getSlot()}")
        print(f"  Version: {client.getVersion().get('solana-core')}")
    except (NodeConnectionError, SolanaRPCError) as e:
        print(f"  Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    check_rpc()
