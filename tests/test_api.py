from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from models import RoleName, User
from security import hash_password
from services import get_or_create_role


PASSWORD = "Secreto1!"


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_password_reset(self, to, reset_link, nickname=None) -> None:
        self.sent.append((to, reset_link))


class FakeAssistant:
    def __init__(self, answer: str = "Vas bien") -> None:
        self.answer = answer
        self.calls: list[tuple[str, str]] = []

    def ask(self, context: str, question: str) -> str:
        self.calls.append((context, question))
        return self.answer


def make_client(mailer=None, assistant=None):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides = {
        main.get_db: override_db,
        main.get_mailer: lambda: mailer or FakeMailer(),
        main.get_assistant: lambda: assistant or FakeAssistant(),
    }
    return TestClient(main.app), factory


def signup_and_login(client: TestClient, email: str = "ana@example.com") -> int:
    response = client.post(
        "/api/auth/signup",
        json={"email": email, "password": PASSWORD, "nickname": "Ana"},
    )
    assert response.status_code == 201
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["user"]["id"]


def make_admin(factory, email: str, role: RoleName) -> None:
    with factory() as session:
        session.add(
            User(
                email=email,
                password_hash=hash_password(PASSWORD),
                role=get_or_create_role(session, role),
            )
        )
        session.commit()


def create_account_with_tag(client: TestClient, user_id: int, money=0) -> tuple[int, int]:
    category = client.post("/api/category", json={"tipo": "Ahorros"}).json()["category"]
    account = client.post(
        "/api/account",
        json={
            "name": "Principal",
            "money": money,
            "categoryId": category["id"],
            "userId": user_id,
        },
    )
    assert account.status_code == 201
    account_id = account.json()["account"]["id"]
    tag = client.post("/api/tag", json={"name": "Comida", "accountId": account_id})
    assert tag.status_code == 201
    return account_id, tag.json()["tag"]["id"]


def test_health_and_root() -> None:
    client, _factory = make_client()

    assert client.get("/health").json() == {"status": "ok", "message": "Server is running"}
    assert client.get("/").status_code == 200


def test_login_accepts_english_and_spanish_field_names() -> None:
    client, _factory = make_client()
    client.post("/api/auth/signup", json={"email": "ana@example.com", "password": PASSWORD})

    english = client.post(
        "/api/auth/login", json={"email": "ana@example.com", "password": PASSWORD}
    )
    spanish = client.post(
        "/api/auth/login",
        json={"correoElectronico": "ana@example.com", "contraseña": PASSWORD},
    )

    assert english.status_code == 200
    assert spanish.status_code == 200
    assert "authToken" in english.cookies
    assert english.json()["user"]["email"] == "ana@example.com"


def test_login_with_wrong_password_is_unauthenticated() -> None:
    client, _factory = make_client()
    client.post("/api/auth/signup", json={"email": "ana@example.com", "password": PASSWORD})

    response = client.post(
        "/api/auth/login", json={"email": "ana@example.com", "password": "Otra1234!"}
    )

    assert response.status_code == 401
    assert response.json() == {
        "kind": "unauthenticated",
        "message": "Credenciales inválidas",
    }


def test_duplicate_signup_is_a_validation_error() -> None:
    client, _factory = make_client()
    payload = {"email": "ana@example.com", "password": PASSWORD}
    assert client.post("/api/auth/signup", json=payload).status_code == 201

    response = client.post("/api/auth/signup", json=payload)

    assert response.status_code == 400
    assert response.json() == {
        "kind": "validation",
        "message": "El correo electrónico ya está registrado",
    }


def test_signup_missing_fields_reports_them() -> None:
    client, _factory = make_client()

    response = client.post("/api/auth/signup", json={"email": "ana@example.com"})

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"
    assert "password" in response.json()["message"]


def test_protected_route_without_cookie_is_rejected() -> None:
    client, _factory = make_client()

    response = client.get("/api/auth/profile")

    assert response.status_code == 401
    assert response.json()["message"] == "Autenticación requerida"


def test_profile_and_logout() -> None:
    client, _factory = make_client()
    signup_and_login(client)

    profile = client.get("/api/auth/profile").json()["user"]
    assert profile["role"] == "user"
    assert profile["nickname"] == "Ana"

    updated = client.put("/api/auth/profile", json={"nickname": "Anita"})
    assert updated.json()["user"]["nickname"] == "Anita"

    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/auth/profile").status_code == 401


def test_income_transaction_updates_account_balance() -> None:
    client, _factory = make_client()
    user_id = signup_and_login(client)
    account_id, tag_id = create_account_with_tag(client, user_id)

    response = client.post(
        "/api/transactions", json={"amount": 100, "isIncome": True, "tagId": tag_id}
    )

    assert response.status_code == 201
    assert response.json()["transaction"]["transactionDate"].endswith("Z")
    accounts = client.get("/api/account").json()
    assert [a["money"] for a in accounts if a["id"] == account_id] == [100.0]


def test_transaction_on_unknown_tag_is_not_found() -> None:
    client, _factory = make_client()
    signup_and_login(client)

    response = client.post(
        "/api/transactions",
        json={
            "amount": 10,
            "isIncome": True,
            "transactionDate": "2025-01-01",
            "tagId": 999,
        },
    )

    assert response.status_code == 404
    assert response.json() == {
        "kind": "not_found",
        "message": "Cuenta o tag no encontrada",
    }


def test_overdrawing_expense_returns_conflict_and_keeps_balance() -> None:
    client, _factory = make_client()
    user_id = signup_and_login(client)
    account_id, tag_id = create_account_with_tag(client, user_id, money=50)

    response = client.post(
        "/api/transactions",
        json={
            "amount": 100,
            "isIncome": False,
            "transactionDate": "2025-01-01T00:00:00Z",
            "tagId": tag_id,
        },
    )

    assert response.status_code == 409
    assert response.json() == {
        "kind": "insufficient_funds",
        "message": "Dinero insuficiente en la cuenta",
    }
    accounts = client.get(f"/api/account/{user_id}").json()
    assert accounts[0]["id"] == account_id
    assert accounts[0]["money"] == 50.0
    assert client.get("/api/transactions").json() == []


def test_accounts_by_user_are_stable_and_private() -> None:
    client, _factory = make_client()
    user_id = signup_and_login(client)
    create_account_with_tag(client, user_id, money=10)

    first = client.get(f"/api/account/{user_id}")
    second = client.get(f"/api/account/{user_id}")

    assert first.status_code == 200
    assert first.json() == second.json()
    assert client.get(f"/api/account/{user_id + 1}").status_code == 403


def test_transaction_lookup_by_date_and_type() -> None:
    client, _factory = make_client()
    user_id = signup_and_login(client)
    _account_id, tag_id = create_account_with_tag(client, user_id, money=100)
    for amount, is_income, day in ((10, True, "01"), (5, False, "01"), (7, True, "02")):
        client.post(
            "/api/transactions",
            json={
                "amount": amount,
                "isIncome": is_income,
                "transactionDate": f"2025-03-{day}T10:00:00Z",
                "tagId": tag_id,
            },
        )

    by_date = client.get("/api/transactions/byDate", params={"date": "2025-03-01"})
    expenses = client.get(
        "/api/transactions/byTypeDate", params={"date": "2025-03-01", "type": "expense"}
    )
    missing = client.get("/api/transactions/byDate")

    assert sorted(t["amount"] for t in by_date.json()) == [5.0, 10.0]
    assert [t["amount"] for t in expenses.json()] == [5.0]
    assert expenses.json()[0]["tag"]["id"] == tag_id
    assert missing.status_code == 400
    assert missing.json()["message"] == "Falta el parámetro 'date'"


def test_goal_with_tag_target_exposes_single_target_row() -> None:
    client, _factory = make_client()
    user_id = signup_and_login(client)
    _account_id, tag_id = create_account_with_tag(client, user_id)

    created = client.post(
        "/api/goal",
        json={
            "description": "Vacaciones",
            "init_date": "2025-01-01T00:00:00Z",
            "final_date": "2025-12-31T00:00:00Z",
            "max_money": 1000,
            "target": {"targetType": "tag", "targetId": tag_id},
        },
    )
    assert created.status_code == 201
    goal_id = created.json()["goal"]["id"]

    goal = client.get(f"/api/goal/{goal_id}").json()

    assert goal["max_money"] == 1000.0
    assert goal["actual_progress"] == 0.0
    assert len(goal["target"]) == 1
    assert goal["target"][0]["targetType"] == "tag"
    assert goal["target"][0]["targetId"] == tag_id
    assert goal["target"][0]["goalId"] == goal_id

    progress = client.patch(f"/api/goal/{goal_id}/progress", json={"actual_progress": 250})
    assert progress.json()["goal"]["actual_progress"] == 250.0
    assert [g["id"] for g in client.get(f"/api/goal/user/{user_id}").json()] == [goal_id]


def test_goal_without_target_is_rejected() -> None:
    client, _factory = make_client()
    signup_and_login(client)

    response = client.post(
        "/api/goal",
        json={
            "description": "Vacaciones",
            "init_date": "2025-01-01T00:00:00Z",
            "final_date": "2025-12-31T00:00:00Z",
            "max_money": 1000,
        },
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Debe proporcionar un target (cuenta o tag)"


def test_password_recovery_response_does_not_reveal_accounts() -> None:
    mailer = FakeMailer()
    client, _factory = make_client(mailer=mailer)
    client.post("/api/auth/signup", json={"email": "ana@example.com", "password": PASSWORD})

    known = client.post("/api/auth/recover", json={"email": "ana@example.com"})
    unknown = client.post("/api/auth/recover", json={"email": "nadie@example.com"})

    assert known.status_code == unknown.status_code == 202
    assert known.json() == unknown.json()
    assert [to for to, _link in mailer.sent] == ["ana@example.com"]
    assert mailer.sent[0][1].startswith("http://localhost:5173/reset-password/")


def test_password_reset_flow_is_single_use() -> None:
    mailer = FakeMailer()
    client, _factory = make_client(mailer=mailer)
    client.post("/api/auth/signup", json={"email": "ana@example.com", "password": PASSWORD})
    client.post("/api/auth/recover", json={"email": "ana@example.com"})
    token = mailer.sent[0][1].rsplit("/", 1)[-1]
    new_password = "Nuevo123!"

    mismatch = client.post(
        f"/api/auth/reset/{token}",
        json={"password": new_password, "confirmPassword": "Otro123!"},
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["message"] == "Las contraseñas no coinciden"

    reset = client.post(
        f"/api/auth/reset/{token}",
        json={"password": new_password, "confirmPassword": new_password},
    )
    assert reset.status_code == 200

    reused = client.post(
        f"/api/auth/reset/{token}",
        json={"password": new_password, "confirmPassword": new_password},
    )
    assert reused.status_code == 400
    assert reused.json()["message"] == "Token inválido o expirado"

    login = client.post(
        "/api/auth/login", json={"email": "ana@example.com", "password": new_password}
    )
    assert login.status_code == 200


def test_admin_login_requires_admin_role() -> None:
    client, factory = make_client()
    client.post("/api/auth/signup", json={"email": "ana@example.com", "password": PASSWORD})
    make_admin(factory, "admin@example.com", RoleName.admin)

    denied = client.post(
        "/api/auth/admin/login", json={"email": "ana@example.com", "password": PASSWORD}
    )
    assert denied.status_code == 403

    allowed = client.post(
        "/api/auth/admin/login", json={"email": "admin@example.com", "password": PASSWORD}
    )
    assert allowed.status_code == 200
    assert allowed.json()["user"]["role"] == "admin"
    assert "adminAuthToken" in allowed.cookies

    users = client.get("/api/admin/users").json()["users"]
    assert sorted(u["email"] for u in users) == ["admin@example.com", "ana@example.com"]

    logs = client.get("/api/admin/logs/login").json()["logs"]
    assert len(logs) == 1

    overview = client.get(
        "/api/admin/stats/overview", params={"from": "2025-01-01", "to": "2099-01-01"}
    ).json()
    assert overview["totalUsers"] == 2
    assert overview["adminCount"] == 1


def test_admin_routes_reject_user_cookie() -> None:
    client, _factory = make_client()
    signup_and_login(client)

    response = client.get("/api/admin/users")

    assert response.status_code == 401
    assert response.json()["message"] == "Autenticación de administrador requerida"


def test_only_super_admin_manages_admins() -> None:
    client, factory = make_client()
    make_admin(factory, "admin@example.com", RoleName.admin)
    make_admin(factory, "root@example.com", RoleName.super_admin)
    payload = {"email": "nuevo@example.com", "password": PASSWORD}

    client.post(
        "/api/auth/admin/login", json={"email": "admin@example.com", "password": PASSWORD}
    )
    forbidden = client.post("/api/admin/admins", json=payload)
    assert forbidden.status_code == 403
    assert forbidden.json()["message"] == "Acceso de súper administrador requerido"

    client.post(
        "/api/auth/admin/login", json={"email": "root@example.com", "password": PASSWORD}
    )
    created = client.post("/api/admin/admins", json=payload)
    assert created.status_code == 201
    assert created.json()["user"]["role"] == "admin"

    removed = client.delete(f"/api/admin/admins/{created.json()['user']['id']}")
    assert removed.status_code == 200


def test_soft_deleted_user_cannot_log_in() -> None:
    client, factory = make_client()
    user_id = signup_and_login(client)
    make_admin(factory, "admin@example.com", RoleName.admin)
    client.post(
        "/api/auth/admin/login", json={"email": "admin@example.com", "password": PASSWORD}
    )

    assert client.delete(f"/api/admin/users/{user_id}").status_code == 200

    response = client.post(
        "/api/auth/login", json={"email": "ana@example.com", "password": PASSWORD}
    )
    assert response.status_code == 401


def test_chat_answers_and_keeps_history() -> None:
    assistant = FakeAssistant(answer="Tu saldo es 40")
    client, _factory = make_client(assistant=assistant)
    user_id = signup_and_login(client)
    account_id, _tag_id = create_account_with_tag(client, user_id, money=40)

    response = client.post(
        "/api/chat", json={"accountId": account_id, "question": "¿Cuánto tengo?"}
    )

    assert response.status_code == 200
    assert response.json() == {"answer": "Tu saldo es 40"}
    context, question = assistant.calls[0]
    assert "- Nombre: Principal" in context
    assert "- Dinero disponible: 40" in context
    assert question == "¿Cuánto tengo?"

    history = client.get("/api/chat", params={"accountId": account_id}).json()
    assert history["chatId"] is not None
    assert [m["message_send"] for m in history["messages"]] == ["¿Cuánto tengo?"]
    assert [m["answers_message"] for m in history["messages"]] == ["Tu saldo es 40"]


def test_chat_for_foreign_account_is_not_found() -> None:
    client, _factory = make_client()
    owner_id = signup_and_login(client, "ana@example.com")
    account_id, _tag_id = create_account_with_tag(client, owner_id)
    client.cookies.clear()
    signup_and_login(client, "eve@example.com")

    response = client.post("/api/chat", json={"accountId": account_id, "question": "Hola"})

    assert response.status_code == 404
    assert response.json()["message"] == "Account not found"
