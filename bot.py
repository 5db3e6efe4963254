# FILE: bot.py
"""
Bot service entrypoint.
Resolves the layered config and serves a health check over HTTP or HTTPS.
"""
import argparse
import logging
import ssl
import sys
from typing import List, Optional

from aiohttp import web

from config import DEFAULT_CONFIG_PATH, Config, configure, get_config

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

HOST = "0.0.0.0"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat bot service")
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="apiserver config file path.",
    )
    return parser.parse_args(argv)


async def health_check(request):
    """Health check endpoint."""
    return web.Response(text="ok", status=200)


def build_ssl_context(config: Config) -> Optional[ssl.SSLContext]:
    """Server TLS context from the validated cert/key paths, or None for plain HTTP."""
    if not config.USE_HTTPS:
        return None

    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(certfile=config.get_cert_file(), keyfile=config.get_key_file())
    return context


def create_app(config: Config) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application()
    app["config"] = config
    app.router.add_get("/healthz", health_check)
    return app


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)
    try:
        configure(args.config)
        config = get_config()

        ssl_context = build_ssl_context(config)
        port = config.HTTPS_PORT if ssl_context else config.HTTP_PORT
        scheme = "https" if ssl_context else "http"

        logger.info(f"Starting {config.BOT_NAME or 'bot'} on {scheme}://{HOST}:{port}")
        logger.info(f"Upstream API: {config.API_URL} ({len(config.OPENAI_KEY)} key(s))")
        if config.AZURE_ON:
            logger.info(f"Azure deployment: {config.AZURE_DEPLOYMENT_NAME}")
        if config.HTTP_LOGGER_ENABLE:
            logger.info(f"HTTP logger: {config.HTTP_LOGGER_METHOD} {config.HTTP_LOGGER_URL}")

        app = create_app(config)
        web.run_app(app, host=HOST, port=port, ssl_context=ssl_context)

    except Exception as e:
        logger.error(f"Failed to start bot: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
