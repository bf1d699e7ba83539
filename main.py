from asyncio import (
    new_event_loop,
    set_event_loop,
    all_tasks,
    AbstractEventLoop,
)
from logging import basicConfig, warning
from signal import SIGHUP, SIGTERM, Signals
from aiohttp.web import delete, get, patch, post, Application, run_app

import configs
from routers import (
    health_router,
    list_records_router,
    search_records_router,
    get_record_router,
    create_record_router,
    update_record_router,
    delete_record_router,
)
from storage import init_db


class ServiceSignal(BaseException):
    """Unwinds `run_app` when the process receives a control signal."""

    def __init__(self, signum: Signals, restart: bool):
        super().__init__(f"{signum.name} received")
        self.signum = signum
        self.restart = restart


def on_signal(signum: Signals, restart: bool):
    """Builds a loop signal callback; SIGHUP restarts the service, SIGTERM stops it."""

    def handler() -> None:
        warning("Received %s", signum.name)
        raise ServiceSignal(signum, restart)

    return handler


def shutdown_loop(loop: AbstractEventLoop) -> None:
    for task in all_tasks(loop=loop):
        task.cancel()
    loop.close()


def new_loop() -> AbstractEventLoop:
    loop = new_event_loop()
    loop.add_signal_handler(SIGHUP, on_signal(SIGHUP, restart=True))
    loop.add_signal_handler(SIGTERM, on_signal(SIGTERM, restart=False))
    return loop


async def on_startup(_app: Application) -> None:
    await init_db()


def create_app() -> Application:
    """Build the application with its routes and the schema bootstrap hook."""
    app = Application()
    app.on_startup.append(on_startup)
    app.add_routes(
        [
            get("/health", health_router),
            get("/{table}", list_records_router),
            post("/{table}", create_record_router),
            post("/{table}/search", search_records_router),
            get("/{table}/{record_id}", get_record_router),
            patch("/{table}/{record_id}", update_record_router),
            delete("/{table}/{record_id}", delete_record_router),
        ]
    )
    return app


def run() -> bool:
    """
    Serve the application until a control signal arrives.

    Returns:
        bool: True if SIGHUP asked for a restart, False on SIGTERM.
    """
    loop = new_loop()
    set_event_loop(loop)

    try:
        run_app(create_app(), host=configs.host, port=configs.port, loop=loop)
    except ServiceSignal as sig:
        warning("Restarting..." if sig.restart else "Exiting...")
        shutdown_loop(loop)
        return sig.restart
    return False


def main() -> None:
    """Entry point: configure logging and serve until SIGTERM."""
    basicConfig(level=configs.log_level)
    while run():
        pass


if __name__ == "__main__":
    main()
