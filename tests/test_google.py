import httpx

from crm.auth.google import GoogleIdentityClient

RealClient = httpx.Client

def use_transport(monkeypatch, handler):
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr("crm.auth.google.httpx.Client", lambda **kwargs: RealClient(transport=transport, **kwargs))

def test_fetch_userinfo(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer tok"
        return httpx.Response(
            200, json={"sub": "1234", "email": "gabe@example.com", "name": "Gabe", "picture": "http://img/g.png"}
        )

    use_transport(monkeypatch, handler)
    account = GoogleIdentityClient(userinfo_url="https://google.example.com/userinfo").fetch_userinfo("tok")

    assert account.email == "gabe@example.com"
    assert account.avatar == "http://img/g.png"
    assert account.google_id == "1234"

def test_rejected_token(monkeypatch):
    use_transport(monkeypatch, lambda request: httpx.Response(401, json={"error": "invalid_token"}))
    assert GoogleIdentityClient(userinfo_url="https://google.example.com/userinfo").fetch_userinfo("bad") is None

def test_userinfo_without_email(monkeypatch):
    use_transport(monkeypatch, lambda request: httpx.Response(200, json={"sub": "1234"}))
    assert GoogleIdentityClient(userinfo_url="https://google.example.com/userinfo").fetch_userinfo("tok") is None
