from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.responses import Response

from drivingschool.auth import jwt_handler
from drivingschool.core import config
from drivingschool.routes import auth_routes
from drivingschool.routes.auth_routes import LocalLoginRequest, RegisterRequest


class FakeOidcClient:
    def __init__(self, claims: dict):
        self.claims = claims
        self.exchanged = []

    def build_authorize_url(self, state: str, nonce: str) -> str:
        return f'https://idp.example.com/authorize?state={state}&nonce={nonce}'

    def exchange_code(self, code: str) -> dict:
        self.exchanged.append(code)
        return {'access_token': 'access-123'}

    def fetch_userinfo(self, access_token: str) -> dict:
        assert access_token == 'access-123'
        return self.claims

    def build_end_session_url(self, post_logout_redirect_uri: str | None = None) -> str | None:
        return f'https://idp.example.com/logout?post_logout_redirect_uri={post_logout_redirect_uri}'


@pytest.fixture
def oidc_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'OIDC_ISSUER_URL', 'https://idp.example.com')
    monkeypatch.setattr(config, 'OIDC_CLIENT_ID', 'driving-school')
    monkeypatch.setattr(config, 'FRONTEND_BASE_URL', 'http://localhost:5173/')


def _use_fake_client(monkeypatch: pytest.MonkeyPatch, claims: dict) -> FakeOidcClient:
    client = FakeOidcClient(claims)
    monkeypatch.setattr(auth_routes, 'get_oidc_client', lambda: client)
    return client


def _browser(nonce: str) -> SimpleNamespace:
    return SimpleNamespace(cookies={config.OIDC_NONCE_COOKIE_NAME: nonce})


def _session_token(response: Response) -> str:
    [cookie] = [
        value for value in response.headers.getlist('set-cookie')
        if value.startswith(f'{config.SESSION_COOKIE_NAME}=')
    ]
    return cookie.split(f'{config.SESSION_COOKIE_NAME}=', 1)[1].split(';', 1)[0]


def test_register_creates_student_with_hashed_password(storage) -> None:
    result = auth_routes.register(
        data=RegisterRequest(email='Learner@Example.com', password='password123', first_name=' Lee ', last_name='Park'),
        storage=storage,
    )

    user = storage.get_user(result['user_id'])
    assert user.email == 'learner@example.com'
    assert user.role == 'student'
    assert user.first_name == 'Lee'
    assert user.password != 'password123'


def test_local_login_sets_session_cookie(storage) -> None:
    auth_routes.register(
        data=RegisterRequest(email='learner@example.com', password='password123', first_name='Lee', last_name='Park'),
        storage=storage,
    )
    response = Response()

    result = auth_routes.local_login(
        data=LocalLoginRequest(email=' LEARNER@example.com', password='password123'),
        response=response,
        storage=storage,
    )

    assert result['user'].email == 'learner@example.com'
    payload = jwt_handler.decode_access_token(_session_token(response))
    assert payload['sub'] == result['user'].id
    assert storage.get_auth_session(payload['sid']).auth_method == 'local'
    assert 'httponly' in response.headers['set-cookie'].lower()


def test_login_prunes_expired_sessions(storage, make_user) -> None:
    auth_routes.register(
        data=RegisterRequest(email='learner@example.com', password='password123', first_name='Lee', last_name='Park'),
        storage=storage,
    )
    other = make_user()
    expired = storage.create_auth_session(other.id, 'local', datetime.now() - timedelta(minutes=1))
    current = storage.create_auth_session(other.id, 'local', datetime.now() + timedelta(hours=1))

    auth_routes.local_login(
        data=LocalLoginRequest(email='learner@example.com', password='password123'),
        response=Response(),
        storage=storage,
    )

    assert storage.get_auth_session(expired.id) is None
    assert storage.get_auth_session(current.id) is not None


def test_oidc_login_redirects_with_signed_state(oidc_enabled, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_fake_client(monkeypatch, {})

    response = auth_routes.oidc_login()

    assert response.status_code == 302
    location = response.headers['location']
    state = location.split('state=', 1)[1].split('&', 1)[0]
    nonce = location.split('nonce=', 1)[1]
    assert jwt_handler.decode_state_token(state)['nonce'] == nonce
    nonce_cookie = response.headers['set-cookie']
    assert nonce_cookie.startswith(f'{config.OIDC_NONCE_COOKIE_NAME}={nonce};')
    assert 'httponly' in nonce_cookie.lower()


def test_oidc_callback_creates_user_and_session(storage, oidc_enabled, monkeypatch: pytest.MonkeyPatch) -> None:
    client = _use_fake_client(
        monkeypatch,
        {'sub': 'idp-42', 'email': 'driver@example.com', 'given_name': 'Dana', 'family_name': 'Lee', 'role': 'admin'},
    )
    state = jwt_handler.create_state_token('nonce-1')

    response = auth_routes.oidc_callback(
        request=_browser('nonce-1'), code='auth-code', state=state, error=None, storage=storage
    )

    assert response.status_code == 302
    assert response.headers['location'] == 'http://localhost:5173/'
    assert client.exchanged == ['auth-code']
    user = storage.get_user_by_oidc_subject('idp-42')
    assert (user.email, user.first_name, user.role) == ('driver@example.com', 'Dana', 'admin')
    payload = jwt_handler.decode_access_token(_session_token(response))
    assert payload['sub'] == user.id
    assert any(
        value.startswith(f'{config.OIDC_NONCE_COOKIE_NAME}=""') for value in response.headers.getlist('set-cookie')
    )


def test_oidc_callback_links_existing_local_account(storage, make_user, oidc_enabled, monkeypatch) -> None:
    existing = make_user(role='instructor', email='coach@example.com', password='hashed')
    _use_fake_client(monkeypatch, {'sub': 'idp-7', 'email': 'coach@example.com', 'role': 'student'})

    auth_routes.oidc_callback(
        request=_browser('nonce'),
        code='auth-code',
        state=jwt_handler.create_state_token('nonce'),
        error=None,
        storage=storage,
    )

    linked = storage.get_user_by_oidc_subject('idp-7')
    assert linked.id == existing.id
    assert linked.role == 'instructor'
    assert linked.password == 'hashed'


@pytest.mark.parametrize(
    ('kwargs', 'detail'),
    [
        ({'code': None, 'state': None, 'error': 'access_denied'}, 'Identity provider error: access_denied'),
        ({'code': 'auth-code', 'state': None, 'error': None}, 'Missing authorization code or state'),
        ({'code': 'auth-code', 'state': 'not-a-jwt', 'error': None}, 'Invalid or expired login state'),
    ],
)
def test_oidc_callback_rejects_bad_requests(storage, oidc_enabled, monkeypatch, kwargs: dict, detail: str) -> None:
    _use_fake_client(monkeypatch, {'sub': 'idp-1'})

    with pytest.raises(HTTPException) as exception_info:
        auth_routes.oidc_callback(request=_browser('nonce'), storage=storage, **kwargs)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == detail


def test_oidc_callback_rejects_session_token_as_state(storage, oidc_enabled, monkeypatch) -> None:
    _use_fake_client(monkeypatch, {'sub': 'idp-1'})
    session_token = jwt_handler.create_access_token(subject='user-1', session_id='session-1')

    with pytest.raises(HTTPException) as exception_info:
        auth_routes.oidc_callback(
            request=_browser('nonce'), code='auth-code', state=session_token, error=None, storage=storage
        )

    assert exception_info.value.detail == 'Invalid or expired login state'


@pytest.mark.parametrize(
    'request_cookies',
    [{}, {config.OIDC_NONCE_COOKIE_NAME: 'nonce-from-this-browser'}],
)
def test_oidc_callback_rejects_state_issued_to_another_browser(
    storage, oidc_enabled, monkeypatch, request_cookies: dict
) -> None:
    client = _use_fake_client(monkeypatch, {'sub': 'idp-attacker', 'email': 'attacker@example.com'})
    foreign_state = jwt_handler.create_state_token('nonce-from-another-browser')

    with pytest.raises(HTTPException) as exception_info:
        auth_routes.oidc_callback(
            request=SimpleNamespace(cookies=request_cookies),
            code='attacker-code',
            state=foreign_state,
            error=None,
            storage=storage,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Login state does not match this browser'
    assert client.exchanged == []
    assert storage.get_user_by_oidc_subject('idp-attacker') is None


def test_oidc_callback_rejects_disabled_account(storage, make_user, oidc_enabled, monkeypatch) -> None:
    make_user(email='gone@example.com', oidc_subject='idp-9', is_active=False)
    _use_fake_client(monkeypatch, {'sub': 'idp-9'})

    with pytest.raises(HTTPException) as exception_info:
        auth_routes.oidc_callback(
            request=_browser('nonce'),
            code='auth-code',
            state=jwt_handler.create_state_token('nonce'),
            error=None,
            storage=storage,
        )

    assert exception_info.value.status_code == 403


def test_logout_ends_federated_session_at_provider(storage, make_user, oidc_enabled, monkeypatch) -> None:
    _use_fake_client(monkeypatch, {})
    user = make_user()
    auth_session = storage.create_auth_session(user.id, 'oidc', datetime.now() + timedelta(hours=1))
    token = jwt_handler.create_access_token(subject=user.id, session_id=auth_session.id)
    request = SimpleNamespace(cookies={config.SESSION_COOKIE_NAME: token}, base_url='http://testserver/')

    response = auth_routes.logout(request=request, storage=storage)

    assert response.headers['location'] == (
        'https://idp.example.com/logout?post_logout_redirect_uri=http://localhost:5173/'
    )
    assert storage.get_auth_session(auth_session.id) is None
    assert f'{config.SESSION_COOKIE_NAME}=""' in response.headers['set-cookie']


def test_logout_without_session_redirects_home(storage, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'FRONTEND_BASE_URL', '/')
    request = SimpleNamespace(cookies={config.SESSION_COOKIE_NAME: 'garbage'}, base_url='http://testserver/')

    response = auth_routes.logout(request=request, storage=storage)

    assert response.status_code == 302
    assert response.headers['location'] == '/'
