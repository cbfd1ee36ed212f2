"""Bedrock Anthropic Proxy - Anthropic Messages API gateway for AWS Bedrock.

Accepts Anthropic Messages API requests authenticated with a single shared
bearer token, forwards them to Anthropic models on AWS Bedrock and returns
the result as JSON or as a Server-Sent-Events stream.

Components:
- Server: aiohttp application (``bedrock_proxy.server``) and Lambda adapter
  (``bedrock_proxy.lambda_handler``)
- Gateway: transport-neutral request flow (``bedrock_proxy.gateway``)
- SSE relay: frames backend stream events and reports mid-stream failures
  in-band (``bedrock_proxy.sse``)

Usage (CLI):
    BEARER_TOKEN=secret AWS_REGION=us-west-2 bedrock-proxy serve --port 3000

Usage (direct):
    from bedrock_proxy import GatewayConfig, GatewayServer
    import asyncio

    async def main():
        config = GatewayConfig(bearer_token="secret", aws_region="us-west-2")
        server = GatewayServer(config=config)
        await server.serve()

    asyncio.run(main())
"""

from bedrock_proxy.config import AuthConfig, GatewayConfig
from bedrock_proxy.errors import ErrorShape, translate_error
from bedrock_proxy.server import GatewayServer
from bedrock_proxy.sse import RelayOutcome, RelayState, SSERelay

__all__ = [
    "AuthConfig",
    "ErrorShape",
    "GatewayConfig",
    "GatewayServer",
    "RelayOutcome",
    "RelayState",
    "SSERelay",
    "translate_error",
]
