from conftest import auth, make_db_conn

from kimaaki.main import create_app, is_allowed_origin
from kimaaki.routes.ratings import average_rating


def test_health(client):
    assert client.get("/health").get_json()["status"] == "ok"
    body = client.get("/api/health").get_json()
    assert body["database"] == "connected"
    assert body["direct_db"] == "configured"


def test_health_without_supabase():
    app = create_app(test_config={"TESTING": True, "SOCKETIO_ASYNC_MODE": "threading"})
    assert app.test_client().get("/api/health").get_json()["database"] == "disconnected"


def test_json_404_and_405(client):
    resp = client.get("/api/nao-existe")
    assert resp.status_code == 404
    assert resp.get_json()["status"] == "error"
    assert client.delete("/api/commissions/plans").status_code == 405


def test_cors_origin_rules():
    assert is_allowed_origin("https://admin.kimaaki.com")
    assert is_allowed_origin("https://preview-123.vercel.app")
    assert is_allowed_origin("http://localhost:8080")
    assert is_allowed_origin("https://painel.exemplo.ao", extra={"https://painel.exemplo.ao"})
    assert not is_allowed_origin("https://evil.example.com")
    assert not is_allowed_origin("")


def test_preflight_echoes_allowed_origin(client):
    resp = client.options("/api/orders", headers={"Origin": "http://localhost:5173"})
    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"


# --- perfil ---

def test_me_creates_missing_profile(client, supabase):
    supabase.add_user("new-token", "cliente", "Novo", with_profile=False)

    body = client.get("/api/auth/me", headers=auth("new-token")).get_json()
    assert body["created"] is True
    assert body["degraded"] is False
    assert body["data"]["status"] == "approved"
    assert client.get("/api/auth/me", headers=auth("new-token")).get_json()["created"] is False


def test_me_degraded_when_profiles_unavailable(client, supabase):
    supabase.failing_tables.add("user_profiles")

    body = client.get("/api/auth/me", headers=auth("client-token")).get_json()
    assert body["degraded"] is True
    assert body["data"]["role"] == "cliente"

    resp = client.put("/api/auth/me", json={"full_name": "Ana"}, headers=auth("client-token"))
    assert resp.status_code == 503


def test_update_me_only_editable_fields(client, supabase, users):
    resp = client.put("/api/auth/me", json={"full_name": "Ana Maria", "role": "admin"}, headers=auth("client-token"))

    assert resp.status_code == 200
    profile = next(p for p in supabase.rows("user_profiles") if p["id"] == users.client)
    assert profile["full_name"] == "Ana Maria"
    assert profile["role"] == "cliente"


# --- notificações ---

def test_notifications_endpoints(client, supabase, users):
    supabase.seed("notifications",
                  {"user_id": users.client, "title": "A", "read": False, "created_at": "2025-03-01"},
                  {"user_id": users.client, "title": "B", "read": False, "created_at": "2025-03-02"},
                  {"user_id": users.driver, "title": "C", "read": False, "created_at": "2025-03-03"})

    body = client.get("/api/notifications", headers=auth("client-token")).get_json()
    assert [n["title"] for n in body["data"]] == ["B", "A"]
    assert body["unread_count"] == 2

    first_id = body["data"][0]["id"]
    assert client.put(f"/api/notifications/{first_id}/read", headers=auth("driver-token")).status_code == 404
    assert client.put(f"/api/notifications/{first_id}/read", headers=auth("client-token")).status_code == 200
    assert client.put("/api/notifications/read-all", headers=auth("client-token")).get_json()["data"]["updated"] == 1
    assert client.delete(f"/api/notifications/{first_id}", headers=auth("client-token")).status_code == 200
    assert len(supabase.rows("notifications")) == 2


# --- avaliações ---

def test_average_rating_rounding():
    assert average_rating([]) == 0.0
    assert average_rating([5, 4]) == 4.5
    assert average_rating([5, 4, 4]) == 4.3
    assert average_rating([5, 5, 4]) == 4.7


def test_ratings_flow(client, supabase):
    url = "/api/ratings/restaurant/r1"
    assert client.post(url, json={"rating": 5, "order_id": "o1"}, headers=auth("client-token")).status_code == 201
    assert client.post(url, json={"rating": 4, "order_id": "o1"}, headers=auth("client-token")).status_code == 409
    assert client.post(url, json={"rating": 4, "comment": "Bom"}, headers=auth("client-token")).status_code == 201

    body = client.get(url).get_json()
    assert body["total_reviews"] == 2
    assert body["average_rating"] == 4.5
    assert body["data"][0]["user_name"] == "Ana Cliente"


def test_ratings_validation(client):
    for rating in (0, 6, "cinco", 4.5, None):
        resp = client.post("/api/ratings/driver/d1", json={"rating": rating}, headers=auth("client-token"))
        assert resp.status_code == 400
    assert client.post("/api/ratings/menu/m1", json={"rating": 5}, headers=auth("client-token")).status_code == 400


def test_mark_helpful(supabase, users):
    conn = make_db_conn(fetchone={"id": "rv1", "helpful_count": 3})
    app = create_app(test_config={"TESTING": True, "SOCKETIO_ASYNC_MODE": "threading"},
                     supabase_client=supabase, db_factory=lambda: conn)

    resp = app.test_client().post("/api/ratings/reviews/rv1/helpful", headers=auth("client-token"))
    assert resp.get_json()["data"]["helpful_count"] == 3
    assert "helpful_count = COALESCE(helpful_count, 0) + 1" in conn.test_cursor.execute.call_args[0][0]
    conn.close.assert_called_once()


# --- tempo real ---

def test_socket_subscribe_joins_user_room(app, users):
    from kimaaki.utils.realtime import publish_to_user, socketio

    sio = socketio.test_client(app)
    ack = sio.emit("subscribe", {"token": "client-token"}, callback=True)
    assert ack == {"status": "subscribed", "room": users.client}

    assert publish_to_user(users.client, "notification", {"title": "Oi"})
    received = sio.get_received()
    assert [r["name"] for r in received] == ["notification"]
    assert received[0]["args"][0] == {"title": "Oi"}


def test_socket_subscribe_rejects_bad_token(app):
    from kimaaki.utils.realtime import publish_to_user, socketio

    sio = socketio.test_client(app)
    assert sio.emit("subscribe", {"token": "invalid"}, callback=True)["status"] == "error"
    assert publish_to_user(None, "notification", {}) is False


# --- papéis e status do perfil ---

def test_signup_metadata_role_is_ignored(client, supabase):
    mallory = supabase.add_user("mallory-token", "admin", "Mallory", with_profile=False)

    assert client.get("/api/admin/statistics", headers=auth("mallory-token")).status_code == 403
    profile = next(p for p in supabase.rows("user_profiles") if p["id"] == mallory)
    assert profile["role"] == "cliente"
    assert profile["status"] == "approved"


def test_degraded_profile_is_always_customer(client, supabase):
    supabase.add_user("mallory-token", "admin", "Mallory", with_profile=False)
    supabase.failing_tables.add("user_profiles")

    body = client.get("/api/auth/me", headers=auth("mallory-token")).get_json()
    assert body["degraded"] is True
    assert body["data"]["role"] == "cliente"
    assert client.get("/api/admin/statistics", headers=auth("mallory-token")).status_code == 403


def test_blocked_profiles_are_refused(client, supabase):
    for status in ("pending", "rejected"):
        user_id = supabase.add_user(f"{status}-token", "cliente", with_profile=False)
        supabase.seed("user_profiles", {"id": user_id, "role": "empresa", "status": status})
        assert client.get("/api/orders", headers=auth(f"{status}-token")).status_code == 403
