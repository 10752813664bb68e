"""
Main entrypoint: indexer worker + FastAPI server on one event loop.

The worker (live subscriber, gap reconciler, ingestion pipeline) is started and
stopped by the app lifespan. If the subscriber exhausts its reconnect budget the
server is shut down and the process exits 1 so the supervisor restarts it.

Env: SOLANA_RPC_URL / HELIUS_API_KEY, SOLANA_WS_URL, PROGRAM_ID, DB_PATH, API_HOST, API_PORT, etc.

API-only: uvicorn backend_defipoly.api_server.app:app --host 0.0.0.0 --port 3001
"""

import asyncio
import os
import sys

# Configure structured JSON logging before other imports that may log
from backend_defipoly.defipoly_logging import get_logger

logger = get_logger("main")


async def serve() -> int:
    import uvicorn

    from backend_defipoly.agent_worker.worker import IndexerWorker
    from backend_defipoly.api_server.server import create_app
    from backend_defipoly.config.env import mask_rpc_url
    from backend_defipoly.config.settings import get_settings

    settings = get_settings()
    worker = IndexerWorker(settings)
    app = create_app(worker)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )
    )
    logger.info(
        "main_server_starting",
        host=settings.api_host,
        port=settings.api_port,
        rpc_url=mask_rpc_url(settings.rpc_url),
        program_id=settings.program_id,
    )

    serve_task = asyncio.create_task(server.serve())
    fatal_task = asyncio.create_task(worker.wait_fatal())
    done, _ = await asyncio.wait({serve_task, fatal_task}, return_when=asyncio.FIRST_COMPLETED)
    if fatal_task in done:
        logger.critical("main_worker_fatal", reason=fatal_task.result())
        server.should_exit = True
        await serve_task
        return 1
    fatal_task.cancel()
    return 0


def main() -> None:
    try:
        code = asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("main_keyboard_interrupt")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
