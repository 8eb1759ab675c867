"""
Unit Tests for Configuration and Runtime Reconfiguration
========================================================

Tests for urlrelay/config.py, urlrelay/models.py and the control endpoints in
urlrelay/proxy/routes.py

Test Coverage:
--------------
1. Settings validation and conversion to ProxyConfig
2. ProxyConfig immutability and merging
3. Reconfiguration acknowledgments (accepted, rejected, malformed)
4. Atomic replacement of the running engine
5. Control endpoints (secret enforcement, config read-back, link helper)

Run tests:
----------
    pytest urlrelay/tests/test_config.py -v
"""

from unittest.mock import Mock, patch

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient
from pydantic import ValidationError

from urlrelay.config import (
    ProxyConfig,
    Settings,
    get_settings,
    normalize_prefix,
    validate_configuration,
)
from urlrelay.main import create_app
from urlrelay.proxy.facade import ProxyFacade

EXAMPLE_URL = "https://example.com/"
EXAMPLE_TOKEN = "aHR0cHMlM0ElMkYlMkZleGFtcGxlLmNvbSUyRg"
TEST_SECRET = "test-config-secret-1234567890"


@pytest.fixture
def facade(proxy_config):
    """Facade whose upstream client is never used"""
    return ProxyFacade(proxy_config, Mock(spec=httpx.AsyncClient))


# ============================================================================
# Settings
# ============================================================================

def test_settings_defaults():
    """Test defaults match the documented behaviour"""
    settings = Settings()

    assert settings.PROXY_PREFIX == "/uv/"
    assert settings.TARGET_QUERY_PARAM == "u"
    assert settings.FOLLOW_REDIRECTS is True
    assert settings.RELAY_SET_COOKIE is False
    assert settings.METHOD_OVERRIDE_HEADER == "X-Proxy-Method"


def test_settings_read_from_environment(monkeypatch):
    """Test settings are loaded from environment variables"""
    monkeypatch.setenv("PROXY_PREFIX", "relay")
    monkeypatch.setenv("FOLLOW_REDIRECTS", "false")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.PROXY_PREFIX == "/relay/"
    assert settings.FOLLOW_REDIRECTS is False
    assert settings.LOG_LEVEL == "DEBUG"


def test_settings_reject_unknown_log_level():
    """Test LOG_LEVEL must be a standard level"""
    with pytest.raises(ValidationError):
        Settings(LOG_LEVEL="LOUD")


def test_settings_reject_short_config_secret():
    """Test CONFIG_UPDATE_SECRET must be at least 16 characters"""
    with pytest.raises(ValidationError):
        Settings(CONFIG_UPDATE_SECRET="short")


def test_settings_to_proxy_config():
    """Test settings map onto the engine configuration"""
    settings = Settings(
        PROXY_PREFIX="/p/",
        TARGET_QUERY_PARAM="target",
        FOLLOW_REDIRECTS=False,
        RELAY_SET_COOKIE=True,
    )

    config = settings.to_proxy_config()

    assert config.prefix == "/p/"
    assert config.query_param == "target"
    assert config.follow_redirects is False
    assert config.relay_cookies is True


def test_get_settings_is_cached():
    """Test get_settings returns a singleton"""
    get_settings.cache_clear()

    assert get_settings() is get_settings()

    get_settings.cache_clear()


def test_validate_configuration_reports_warnings():
    """Test the startup report flags risky settings"""
    report = validate_configuration(Settings(RELAY_SET_COOKIE=True))

    assert report["valid"] is True
    assert any("RELAY_SET_COOKIE" in w for w in report["warnings"])
    assert any("CONFIG_UPDATE_SECRET" in w for w in report["warnings"])


def test_validate_configuration_rejects_root_prefix():
    """Test a prefix of '/' is reported as an error"""
    report = validate_configuration(Settings(PROXY_PREFIX="/"))

    assert report["valid"] is False
    assert report["errors"]


def test_validate_configuration_rejects_control_prefix():
    """Test a prefix over the control endpoints is reported as an error"""
    report = validate_configuration(Settings(PROXY_PREFIX="/__urlrelay"))

    assert report["valid"] is False
    assert any("PROXY_PREFIX" in e for e in report["errors"])


# ============================================================================
# ProxyConfig
# ============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("/uv/", "/uv/"),
    ("uv", "/uv/"),
    ("/proxy", "/proxy/"),
    ("", "/uv/"),
    (None, "/uv/"),
])
def test_normalize_prefix(raw, expected):
    """Test prefixes always start and end with a slash"""
    assert normalize_prefix(raw) == expected


def test_proxy_config_is_frozen(proxy_config):
    """Test a configuration cannot be mutated in place"""
    with pytest.raises(ValidationError):
        proxy_config.follow_redirects = False


def test_proxy_config_rejects_query_in_prefix():
    """Test prefixes must be plain paths"""
    with pytest.raises(ValidationError):
        ProxyConfig(prefix="/uv?x=1")


@pytest.mark.parametrize("prefix", ["/", "/__urlrelay", "/__urlrelay/config/"])
def test_proxy_config_rejects_prefix_shadowing_service_routes(prefix):
    """Test prefixes that would capture the control endpoints are rejected"""
    with pytest.raises(ValidationError):
        ProxyConfig(prefix=prefix)


@pytest.mark.parametrize("prefix", ["/__url/", "/__urlrelayed/", "/proxy/__urlrelay/"])
def test_proxy_config_accepts_prefix_near_control_path(prefix):
    """Test only prefixes that really overlap the control endpoints are rejected"""
    assert ProxyConfig(prefix=prefix).prefix == prefix


def test_merged_returns_new_config(proxy_config):
    """Test merged leaves the original untouched"""
    updated = proxy_config.merged({"follow_redirects": False, "prefix": "relay"})

    assert updated.follow_redirects is False
    assert updated.prefix == "/relay/"
    assert proxy_config.follow_redirects is True
    assert proxy_config.prefix == "/uv/"
    assert updated.decode is proxy_config.decode


def test_describe_omits_callables(proxy_config):
    """Test describe exposes only plain values"""
    described = proxy_config.describe()

    assert described["prefix"] == "/uv/"
    assert described["followRedirects"] is True
    assert "encode" not in described
    assert "decode" not in described


# ============================================================================
# Reconfiguration Messages
# ============================================================================

def test_config_update_applies_and_acks(facade):
    """Test a valid update is applied and acknowledged"""
    ack = facade.on_config_update({"configUpdate": {"followRedirects": False}})

    assert ack == {"ok": True}
    assert facade.config.follow_redirects is False


def test_config_update_accepts_legacy_key_and_aliases(facade):
    """Test the legacy message key and alternative field names"""
    ack = facade.on_config_update({
        "__uv_config_update": {"relaySetCookie": True, "query_param": "target"},
    })

    assert ack == {"ok": True}
    assert facade.config.relay_cookies is True
    assert facade.config.query_param == "target"


def test_config_update_partial_keeps_other_fields(facade):
    """Test fields absent from the update keep their values"""
    facade.on_config_update({"configUpdate": {"prefix": "/relay/"}})

    assert facade.config.prefix == "/relay/"
    assert facade.config.follow_redirects is True
    assert facade.config.query_param == "u"


def test_config_update_swaps_engine_atomically(facade, make_request):
    """Test an in-flight engine is never mutated by an update"""
    before = facade.engine

    facade.on_config_update({"configUpdate": {"prefix": "/relay/"}})

    assert facade.engine is not before
    assert before.config.prefix == "/uv/"
    assert before.router.match(make_request(path="/uv/abc"))
    assert facade.route(make_request(path="/relay/abc"))
    assert not facade.route(make_request(path="/uv/abc"))


@pytest.mark.parametrize("message,error", [
    ("not an object", "Reconfiguration message must be an object"),
    ({"somethingElse": {}}, "Message has no configUpdate field"),
    ({"configUpdate": ["prefix"]}, "configUpdate must be an object"),
])
def test_config_update_rejects_malformed_messages(facade, message, error):
    """Test malformed messages are rejected with a reason"""
    assert facade.on_config_update(message) == {"ok": False, "error": error}


def test_config_update_rejects_unknown_field(facade):
    """Test typos in field names are rejected instead of ignored"""
    before = facade.engine

    ack = facade.on_config_update({"configUpdate": {"followRedirect": False}})

    assert ack["ok"] is False
    assert "followRedirect" in ack["error"]
    assert facade.engine is before


def test_config_update_rejects_invalid_prefix(facade):
    """Test an invalid value leaves the running configuration unchanged"""
    ack = facade.on_config_update({"configUpdate": {"prefix": "/uv/?x"}})

    assert ack["ok"] is False
    assert ack["error"]
    assert facade.config.prefix == "/uv/"


def test_config_update_rejects_root_prefix(facade):
    """Test switching the prefix to '/' is refused"""
    ack = facade.on_config_update({"configUpdate": {"prefix": "/"}})

    assert ack["ok"] is False
    assert "intercept every request" in ack["error"]
    assert facade.config.prefix == "/uv/"


def test_config_update_rejects_wrong_type(facade):
    """Test non-boolean flags are rejected"""
    ack = facade.on_config_update({"configUpdate": {"followRedirects": "sometimes"}})

    assert ack["ok"] is False
    assert facade.config.follow_redirects is True


# ============================================================================
# Control Endpoints
# ============================================================================

def test_post_config_applies_update(client):
    """Test POST /__urlrelay/config returns 200 with the ack"""
    response = client.post("/__urlrelay/config", json={"configUpdate": {"prefix": "/relay/"}})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ok": True}
    assert client.get("/__urlrelay/config").json()["prefix"] == "/relay/"


def test_post_config_rejection_returns_422(client):
    """Test a rejected update returns 422 with the reason"""
    response = client.post("/__urlrelay/config", json={"configUpdate": {"bogus": 1}})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["ok"] is False


def test_control_endpoints_survive_rejected_root_prefix(client):
    """Test the service stays reconfigurable after a '/' prefix is refused"""
    rejected = client.post("/__urlrelay/config", json={"configUpdate": {"prefix": "/"}})
    accepted = client.post("/__urlrelay/config", json={"configUpdate": {"prefix": "/relay/"}})

    assert rejected.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert accepted.status_code == status.HTTP_200_OK
    assert accepted.json() == {"ok": True}
    assert client.get("/health").json()["status"] == "ok"


def test_post_config_invalid_json_returns_422(client):
    """Test a malformed body is reported through the ack"""
    response = client.post(
        "/__urlrelay/config",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"].startswith("Invalid JSON")


def test_update_changes_live_routing(client, upstream):
    """Test requests use the new prefix after an update"""
    client.post("/__urlrelay/config", json={"configUpdate": {"prefix": "/relay/"}})

    proxied = client.get(f"/relay/{EXAMPLE_TOKEN}")
    old_prefix = client.get(f"/uv/{EXAMPLE_TOKEN}")

    assert proxied.status_code == status.HTTP_200_OK
    assert old_prefix.status_code == status.HTTP_404_NOT_FOUND
    assert len(upstream.requests) == 1


def test_get_config_returns_current_values(client):
    """Test GET /__urlrelay/config describes the running configuration"""
    response = client.get("/__urlrelay/config")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "prefix": "/uv/",
        "followRedirects": True,
        "relayCookies": False,
        "queryParam": "u",
        "methodOverrideHeader": "X-Proxy-Method",
        "markerHeader": "x-urlrelay-proxied-by",
    }


@pytest.fixture
def secured_client(mock_settings, upstream):
    """Client for an app that requires CONFIG_UPDATE_SECRET"""
    settings = mock_settings.model_copy(update={"CONFIG_UPDATE_SECRET": TEST_SECRET})
    app = create_app(settings, transport=httpx.MockTransport(upstream))

    with patch("urlrelay.proxy.routes.get_settings", return_value=settings):
        with TestClient(app) as test_client:
            yield test_client


def test_post_config_without_secret_returns_401(secured_client):
    """Test the secret is enforced when configured"""
    response = secured_client.post("/__urlrelay/config", json={"configUpdate": {}})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert "X-Internal-Secret" in response.json()["detail"]


def test_post_config_with_wrong_secret_returns_401(secured_client):
    """Test a wrong secret is rejected"""
    response = secured_client.post(
        "/__urlrelay/config",
        json={"configUpdate": {}},
        headers={"X-Internal-Secret": "wrong-secret-1234567890"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_post_config_with_valid_secret_returns_200(secured_client):
    """Test the right secret lets the update through"""
    response = secured_client.post(
        "/__urlrelay/config",
        json={"configUpdate": {"followRedirects": False}},
        headers={"X-Internal-Secret": TEST_SECRET},
    )

    assert response.status_code == status.HTTP_200_OK
    assert secured_client.get("/__urlrelay/config").json()["followRedirects"] is False


def test_encode_endpoint_builds_links(client):
    """Test GET /__urlrelay/encode returns path and query links"""
    response = client.get("/__urlrelay/encode", params={"url": EXAMPLE_URL})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "url": EXAMPLE_URL,
        "token": EXAMPLE_TOKEN,
        "path": f"/uv/{EXAMPLE_TOKEN}",
        "query": f"/uv?u={EXAMPLE_TOKEN}",
    }


def test_encode_endpoint_link_round_trips(client, upstream):
    """Test the generated path link is proxied to the original URL"""
    link = client.get("/__urlrelay/encode", params={"url": "https://example.com/a?b=c"}).json()

    client.get(link["path"])

    assert str(upstream.last.url) == "https://example.com/a?b=c"


def test_encode_endpoint_rejects_non_http_url(client):
    """Test the link helper only accepts absolute http(s) URLs"""
    response = client.get("/__urlrelay/encode", params={"url": "ftp://example.com/"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
