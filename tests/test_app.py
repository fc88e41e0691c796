from unittest.mock import patch

from forever_paws import app as app_module
from forever_paws.app import ForeverPawsApp
from forever_paws.models.commerce import Product
from forever_paws.utils.config import Settings

from fakes import GATEWAY, FakeHttp, auth_envelope

EMAIL = "alice@pawmail.com"


def make_app(tmp_path, **api):
    settings = Settings()
    settings.storage.data_dir = str(tmp_path / "data")
    settings.network.detect_tunnel = False
    settings.checkout.simulate_order_progress = False
    for key, value in api.items():
        setattr(settings.api, key, value)
    return ForeverPawsApp(settings=settings, configure_logging=False)


def test_initialize_wires_services(tmp_path):
    app = make_app(tmp_path, alternate_gateway_url="https://alt.foreverpaws.test/api")
    app.settings.checkout.simulate_order_progress = True
    app.initialize()
    try:
        assert app.sessions.current_session is None
        assert app.alternate_gateway is not None
        assert app.cart.simulator is not None
        assert (tmp_path / "data" / "forever_paws.db").exists()
    finally:
        app.shutdown()
    assert not app.initialized


def test_launch_without_stored_session_makes_no_request(tmp_path):
    app = make_app(tmp_path)
    with patch("forever_paws.net.http_client.ResilientHttpClient.execute") as execute:
        try:
            assert app.launch() is None
        finally:
            app.shutdown()
    execute.assert_not_called()


def test_shutdown_before_initialize_is_noop(tmp_path):
    make_app(tmp_path).shutdown()


def test_cart_survives_relaunch_of_same_user(tmp_path, monkeypatch):
    http = FakeHttp()
    http.add("POST", f"{GATEWAY}/auth/login", body=auth_envelope("u1", EMAIL, "tok"))
    http.add("GET", f"{GATEWAY}/auth/validate", body={"code": 200, "data": {"user": {"id": "u1", "email": EMAIL}}})
    for collection in ("pets", "videos", "letters"):
        http.add("GET", f"{GATEWAY}/{collection}", body={"data": []})
    monkeypatch.setattr(app_module, "ResilientHttpClient", lambda **kwargs: http)

    first = make_app(tmp_path, gateway_url=GATEWAY)
    first.initialize()
    try:
        first.sessions.sign_in(EMAIL, "correct-horse")
        first.cart.add_to_cart(Product(ref="memorial-frame", name="Memorial Frame", price=24.5), quantity=2)
    finally:
        first.shutdown()

    for _ in range(2):
        relaunched = make_app(tmp_path, gateway_url=GATEWAY)
        try:
            assert relaunched.launch().user_id == "u1"
            assert [(i.product_ref, i.quantity) for i in relaunched.cart.cart_items()] == [("memorial-frame", 2)]
        finally:
            relaunched.shutdown()
    assert len(http.called("GET", f"{GATEWAY}/auth/validate")) == 2
