import json
import logging
from typing import Optional

from aiohttp import web

import utils.func as func
from gateway import TelegramGateway
from messaging import RelayRouter, build_router
from storage import KeyValueStore, create_store
from utils.config_manager import ConfigManager

log = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

SETTINGS_KEY = web.AppKey("settings", func.RelaySettings)
ROUTER_KEY = web.AppKey("router", RelayRouter)
STORE_KEY = web.AppKey("store", KeyValueStore)


async def handle_webhook(request: web.Request) -> web.Response:
    """Receive one Telegram update. Always acknowledged unless the secret is wrong."""
    if request.method != "POST":
        return web.Response(text="OK")

    settings = request.app[SETTINGS_KEY]
    if settings.secret_token and request.headers.get(SECRET_HEADER) != settings.secret_token:
        log.warning("Rejected webhook call from %s with a bad secret token", request.remote)
        return web.Response(status=403, text="Forbidden")

    try:
        update = json.loads(await request.text())
    except ValueError as e:
        log.debug("Ignoring malformed webhook body: %s", e)
        return web.Response(text="OK")

    await request.app[ROUTER_KEY].handle_update(update)
    return web.Response(text="OK")


async def handle_health(request: web.Request) -> web.Response:
    """Liveness probe with aggregator stats."""
    router = request.app[ROUTER_KEY]
    return web.json_response({
        "status": "ok",
        "gateway": router.gateway.gateway_name,
        "aggregator": router.aggregator.get_stats()
    })


async def _on_cleanup(app: web.Application) -> None:
    """Let pending album flushes finish, then close the store and gateway."""
    await app[ROUTER_KEY].shutdown()
    store = app.get(STORE_KEY)
    if store is not None:
        await store.close()
    log.debug("Relay shutdown complete")


def create_app(
    settings: func.RelaySettings,
    router: RelayRouter,
    store: Optional[KeyValueStore] = None
) -> web.Application:
    """
    Build the aiohttp application around a ready router.

    Args:
        settings: Resolved settings
        router: Relay router
        store: Storage backend closed on shutdown

    Returns:
        web.Application
    """
    app = web.Application()
    app[SETTINGS_KEY] = settings
    app[ROUTER_KEY] = router
    if store is not None:
        app[STORE_KEY] = store

    app.router.add_get("/healthz", handle_health)
    app.router.add_route("*", settings.webhook_path, handle_webhook)
    app.on_cleanup.append(_on_cleanup)
    return app


async def build_application(settings: func.RelaySettings) -> web.Application:
    """Create the store, gateway and router, then wrap them in the web app."""
    store = await create_store(settings)
    gateway = TelegramGateway(settings.token, settings.api_base)
    router = build_router(settings, store, gateway)
    log.info(
        "Relay ready: workspace %s, verification %s",
        settings.workspace_chat_id, "on" if settings.verification_enabled else "off"
    )
    return create_app(settings, router, store)


def load_settings(config_path: str = func.CONFIG_FILE) -> func.RelaySettings:
    """Create or upgrade config.yml, then resolve settings from it."""
    func.setup_logging()
    ConfigManager(config_path).initialize()

    settings = func.RelaySettings.from_config(func.load_config(config_path))
    if settings.debug_mode:
        func.setup_logging(debug_mode=True)
    return settings


# Start the relay
if __name__ == "__main__":
    settings = load_settings()

    if not settings.token:
        log.critical("No bot token configured (Telegram.token or RELAY_BOT_TOKEN)!")
    elif settings.workspace_chat_id is None:
        log.critical("No workspace chat configured (Telegram.workspace_chat_id or RELAY_WORKSPACE_CHAT_ID)!")
    else:
        try:
            web.run_app(build_application(settings), host=settings.host, port=settings.port, print=None)
        except Exception as e:
            log.critical("Fatal runtime error: %s", e)
