# powerctl/main.py
import logging

import uvicorn
from fastapi import FastAPI

from powerctl.api import wake
from powerctl.safety.gate import SafetyGate
from powerctl.safety.lock import make_lock_backend
from powerctl.wake.dispatcher import WakeDispatcher

log = logging.getLogger("powerctl.main")


def create_app(settings, dispatcher=None, gate=None, locks=None) -> FastAPI:
    app = FastAPI(title="powerctl wake API")
    app.state.settings = settings
    app.state.dispatcher = dispatcher or WakeDispatcher.from_settings(settings)
    # no terminal behind an HTTP request
    app.state.gate = gate or SafetyGate.from_settings(settings, isatty=lambda: False)
    app.state.locks = locks or make_lock_backend(settings)
    app.include_router(wake.router)
    return app


def serve(settings, host=None, port=None) -> None:
    if not settings.wake_api_secret:
        log.warning("wake_api_secret is not set, every request will be refused")
    app = create_app(settings)
    uvicorn.run(app, host=host or settings.wake_api_host, port=port or settings.wake_api_port,
                log_level=settings.log_level.lower())
