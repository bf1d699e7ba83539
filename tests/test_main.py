from signal import SIGHUP, SIGTERM

import pytest

from main import ServiceSignal, create_app, new_loop, on_signal, shutdown_loop


def test_sighup_requests_restart():
    with pytest.raises(ServiceSignal) as caught:
        on_signal(SIGHUP, restart=True)()
    assert caught.value.restart is True
    assert caught.value.signum is SIGHUP


def test_sigterm_requests_exit():
    with pytest.raises(ServiceSignal) as caught:
        on_signal(SIGTERM, restart=False)()
    assert caught.value.restart is False
    assert "SIGTERM" in str(caught.value)


def test_new_loop_is_closed_by_shutdown():
    loop = new_loop()
    shutdown_loop(loop)
    assert loop.is_closed()


def test_create_app_registers_routes():
    app = create_app()
    paths = {route.resource.canonical for route in app.router.routes()}
    assert {"/health", "/{table}", "/{table}/search", "/{table}/{record_id}"} <= paths
