"""Register the proxy's IPN URL with Pesapal, or list registered IPNs.

Run once per environment; put the printed `ipn_id` in PESAPAL_NOTIFICATION_ID
so orders stop registering the URL on every submission.
"""

import argparse
import asyncio
import json

from pesaproxy.common.config import GatewayConfig, settings
from pesaproxy.services.gateway.client import PesapalClient


async def register(client: PesapalClient, url: str, notification_type: str) -> str:
    """Authenticate, register one IPN URL, return its id."""

    token = await client.request_token()
    return await client.register_ipn(token, url, notification_type)


async def list_registered(client: PesapalClient) -> list[dict]:
    token = await client.request_token()
    return await client.list_ipns(token)


def main() -> None:
    """Parse CLI args and register or list IPN URLs."""

    config = GatewayConfig.from_settings(settings)
    parser = argparse.ArgumentParser(description="Register or list Pesapal IPN URLs.")
    parser.add_argument("--url", default=config.ipn_url, help="IPN URL (default: PROXY_BASE_URL + /api/pesapal/ipn)")
    parser.add_argument("--type", dest="notification_type", choices=["GET", "POST"], default="POST")
    parser.add_argument("--list", action="store_true", help="List registered IPNs instead of registering")
    args = parser.parse_args()

    client = PesapalClient(config)
    if args.list:
        print(json.dumps(asyncio.run(list_registered(client)), indent=2))
        return
    if not args.url:
        raise SystemExit("Provide --url or set PROXY_BASE_URL")

    ipn_id = asyncio.run(register(client, args.url, args.notification_type))
    print(f"Registered {args.url} env={config.environment} ipn_id={ipn_id}")
    print(f"PESAPAL_NOTIFICATION_ID={ipn_id}")


if __name__ == "__main__":
    main()
