"""python -m usbllm.server"""

import logging
import os
import sys

import uvicorn

from usbllm.config import LauncherSettings
from usbllm.errors import NoFreePortError
from usbllm.supervisor.ports import find_free_port

MAX_PORT_RETRIES = 10

settings = LauncherSettings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
log = logging.getLogger("usbllm.server")

base_port = int(os.environ.get("PORT", settings.port)) if "USBLLM_PORT" not in os.environ else settings.port
try:
    port = find_free_port(base_port, MAX_PORT_RETRIES + 1, settings.host)
except NoFreePortError as exc:
    log.error("failed to start launcher: %s", exc)
    sys.exit(1)
if port != base_port:
    log.warning("port %d in use, using %d", base_port, port)

log.info("launcher listening at http://%s:%d", settings.host, port)
uvicorn.run(
    "usbllm.server.app:create_app",
    factory=True,
    host=settings.host,
    port=port,
    log_level=settings.log_level.lower(),
    timeout_graceful_shutdown=max(1, round(settings.shutdown_grace)),
)
