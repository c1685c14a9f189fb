import httpx
import pytest
from fastapi.testclient import TestClient

from portal.auth_api import create_auth_app
from portal.auth_client import AuthClient, AuthError, AuthInputError, RequestInFlight
from portal.config import Settings


@pytest.fixture
def auth(settings: Settings) -> AuthClient:
    return AuthClient(client=TestClient(create_auth_app(settings)))


def _mock_client(handler) -> AuthClient:
    return AuthClient(client=httpx.Client(base_url="http://auth.test", transport=httpx.MockTransport(handler)))


def test_register_and_login_returns_account(auth: AuthClient) -> None:
    account = auth.register_and_login("Jo@Corp.Example", "pw", "Jo Park", "manager")
    assert account.email == "jo@corp.example"
    assert account.role == "manager"
    assert account.name == "Jo Park"
    assert auth.guard.state == "settled"


def test_login_with_wrong_role_fails_like_wrong_password(auth: AuthClient) -> None:
    auth.register("jo@corp.example", "pw", "Jo", "employee")

    with pytest.raises(AuthError) as wrong_role:
        auth.login("jo@corp.example", "pw", "hr")
    with pytest.raises(AuthError) as wrong_pw:
        auth.login("jo@corp.example", "bad", "employee")

    assert (wrong_role.value.message, wrong_role.value.status) == (wrong_pw.value.message, wrong_pw.value.status)
    assert wrong_role.value.message == "Invalid credentials"


def test_duplicate_registration_message_is_passed_through(auth: AuthClient) -> None:
    auth.register("jo@corp.example", "pw")
    with pytest.raises(AuthError) as exc:
        auth.register("jo@corp.example", "pw")
    assert exc.value.status == 409
    assert exc.value.message == "Email already exists"


@pytest.mark.parametrize("email,password", [("", "pw"), ("  ", "pw"), ("jo@corp.example", "")])
def test_missing_credentials_never_hit_the_network(email: str, password: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = _mock_client(handler)
    with pytest.raises(AuthInputError):
        client.login(email, password)
    with pytest.raises(AuthInputError):
        client.register(email, password)


def test_error_without_body_uses_status_message() -> None:
    client = _mock_client(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))
    with pytest.raises(AuthError) as exc:
        client.login("jo@corp.example", "pw")
    assert exc.value.message == "Request failed (502)"
    assert exc.value.status == 502


def test_transport_failure_is_normalized() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _mock_client(handler)
    with pytest.raises(AuthError) as exc:
        client.login("jo@corp.example", "pw")
    assert exc.value.message == "Request failed (network error)"
    assert client.guard.state == "settled"


def test_unexpected_login_payload_is_an_auth_error() -> None:
    client = _mock_client(lambda request: httpx.Response(200, json={"id": 1, "email": "jo@corp.example", "role": "boss"}))
    with pytest.raises(AuthError):
        client.login("jo@corp.example", "pw")


def test_second_submission_while_pending_is_refused() -> None:
    refused: list[Exception] = []
    holder: dict[str, AuthClient] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        # A second click lands while the first request is still out.
        try:
            holder["client"].login("jo@corp.example", "pw")
        except RequestInFlight as e:
            refused.append(e)
        return httpx.Response(
            200,
            json={"id": 3, "email": "jo@corp.example", "name": "Jo", "role": "individual", "createdAt": None},
        )

    holder["client"] = _mock_client(handler)
    account = holder["client"].login("jo@corp.example", "pw", "individual")

    assert account.role == "individual"
    assert len(refused) == 1
    assert holder["client"].guard.state == "settled"
    # Once settled, a fresh submission goes through.
    assert holder["client"].login("jo@corp.example", "pw").email == "jo@corp.example"
