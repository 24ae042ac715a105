"""
Serving FastAPI apps inside the supervisor's event loop.

uvicorn normally owns process signals; here the servers are stopped through
the supervisor's root cancel token instead, so Ctrl-C unwinds build groups
and HTTP servers together.
"""

import asyncio
import contextlib
import logging

import uvicorn

from .models import parse_bind_addr
from .sync import CancelToken

logger = logging.getLogger(__name__)


class EmbeddedServer(uvicorn.Server):
    """A uvicorn server that leaves signal handling to its host."""

    def install_signal_handlers(self):
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_server(app, bind_addr: str, tls_cert_file: str = "", tls_key_file: str = "", label: str = "http") -> EmbeddedServer:
    """Create a server for app; TLS is enabled only when both cert and key are set."""
    host, port = parse_bind_addr(bind_addr)

    tls = {}
    if tls_cert_file and tls_key_file:
        logger.info(f"{label} using TLS cert={tls_cert_file} key={tls_key_file}")
        tls = {"ssl_certfile": tls_cert_file, "ssl_keyfile": tls_key_file}
    elif tls_cert_file:
        logger.warning(f"{label} TLS key not set, serving plain HTTP")
    elif tls_key_file:
        logger.warning(f"{label} TLS cert not set, serving plain HTTP")

    config = uvicorn.Config(app, host=host, port=port, log_config=None, lifespan="on", **tls)
    return EmbeddedServer(config)


async def serve(server: EmbeddedServer, token: CancelToken, label: str = "http"):
    """Run server until token is cancelled. Startup failures are logged, never raised."""

    async def stop_when_cancelled():
        await token.wait()
        server.should_exit = True

    stopper = asyncio.create_task(stop_when_cancelled())
    logger.info(f"{label} listening on {server.config.host}:{server.config.port}")
    try:
        await server.serve()
    except SystemExit:
        # uvicorn exits when it cannot bind its socket
        logger.error(f"{label} failed to start on {server.config.host}:{server.config.port}")
    except Exception as e:
        # Missing or unreadable TLS files surface here from config.load()
        logger.error(f"{label} failed to start: {e}")
    finally:
        stopper.cancel()
    logger.info(f"{label} shutdown")
