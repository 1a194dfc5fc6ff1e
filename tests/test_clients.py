import re
from datetime import datetime, timedelta

from therapypro.models import Client, Notification, Payment, RegistrationToken, Session


def test_create_and_list_clients(client, user, auth_headers):
    headers = auth_headers(user)
    response = client.post(
        "/clients",
        headers=headers,
        json={"nome": "  João Pereira ", "email": "joao@example.com", "telefone": "(31) 99876-5432", "valor_sessao": 18000},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["nome"] == "João Pereira"
    assert body["telefone"] == "5531998765432"
    assert body["ativo"] is True

    listed = client.get("/clients", headers=headers, params={"search": "joão"}).json()
    assert [c["id"] for c in listed] == [body["id"]]


def test_invalid_phone_rejected(client, user, auth_headers):
    response = client.post("/clients", headers=auth_headers(user), json={"nome": "Ana", "telefone": "1234"})
    assert response.status_code == 422


def test_blank_name_rejected(client, user, auth_headers):
    assert client.post("/clients", headers=auth_headers(user), json={"nome": "   "}).status_code == 422


def test_free_plan_client_limit(client, user, auth_headers, make_client):
    for index in range(3):
        make_client(user, nome=f"Cliente {index}")
    response = client.post("/clients", headers=auth_headers(user), json={"nome": "Quarto Cliente"})
    assert response.status_code == 403
    assert "limite de 3 clientes" in response.json()["detail"]


def test_premium_has_no_client_limit(client, make_user, auth_headers, make_client):
    premium = make_user(plan="premium")
    for index in range(25):
        make_client(premium, nome=f"Cliente {index}")
    assert client.post("/clients", headers=auth_headers(premium), json={"nome": "Mais um"}).status_code == 201


def test_only_active_filter(client, user, auth_headers, make_client):
    make_client(user, nome="Ativa")
    make_client(user, nome="Inativa", ativo=False)
    names = [c["nome"] for c in client.get("/clients", headers=auth_headers(user), params={"only_active": True}).json()]
    assert names == ["Ativa"]


def test_other_users_client_is_not_found(client, user, make_user, auth_headers, make_client):
    other = make_client(make_user())
    headers = auth_headers(user)
    assert client.get(f"/clients/{other.id}", headers=headers).status_code == 404
    assert client.patch(f"/clients/{other.id}", headers=headers, json={"nome": "X"}).status_code == 404
    assert client.delete(f"/clients/{other.id}", headers=headers).status_code == 404


def test_update_client(client, user, auth_headers, make_client):
    record = make_client(user)
    response = client.patch(f"/clients/{record.id}", headers=auth_headers(user), json={"ativo": False, "valor_sessao": 20000})
    assert response.json()["ativo"] is False
    assert response.json()["valor_sessao"] == 20000


def test_delete_cascades_sessions_and_payments(client, user, auth_headers, make_client, db):
    record = make_client(user)
    headers = auth_headers(user)
    client.post("/sessions", headers=headers, json={"client_id": record.id, "data": "2025-03-10", "horario": "14:00"})
    assert db.query(Payment).count() == 1

    assert client.delete(f"/clients/{record.id}", headers=headers).status_code == 200
    assert db.query(Client).count() == 0
    assert db.query(Session).count() == 0
    assert db.query(Payment).count() == 0


def test_batch_delete_only_own_clients(client, user, make_user, auth_headers, make_client, db):
    mine = [make_client(user, nome=f"C{i}") for i in range(2)]
    theirs = make_client(make_user())
    response = client.post(
        "/clients/batch-delete", headers=auth_headers(user), json={"client_ids": [c.id for c in mine] + [theirs.id]}
    )
    assert response.json()["deletedCount"] == 2
    assert db.query(Client).count() == 1


def test_export_csv_excludes_clinical_notes(client, user, auth_headers, make_client):
    make_client(user, nome="Paciente Sigilo", dados_clinicos="diagnóstico reservado")
    response = client.get("/clients/export", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "Paciente Sigilo" in response.text
    assert "150.00" in response.text
    assert "diagnóstico" not in response.text


def new_registration_link(client, headers) -> str:
    response = client.post("/clients/registration-tokens", headers=headers)
    assert response.status_code == 200
    return response.json()["token"]


def test_registration_link_generation(client, user, auth_headers):
    body = client.post("/clients/registration-tokens", headers=auth_headers(user)).json()
    assert re.fullmatch(r"[0-9a-f]{64}", body["token"])
    assert body["registrationUrl"].endswith(f"/register/{body['token']}")
    assert body["professionalName"] == "Dra. Ana Souza"


def test_client_registers_through_link(client, user, auth_headers, db):
    token = new_registration_link(client, auth_headers(user))
    assert client.get(f"/clients/registration/{token}").json()["status"] == "valid"

    response = client.post(
        f"/clients/registration/{token}",
        json={"nome": " Paula Reis ", "email": "paula@example.com", "telefone": "(21) 99876-1234"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Cadastro realizado com sucesso"

    created = db.get(Client, body["clientId"])
    assert (created.user_id, created.nome, created.telefone) == (user.id, "Paula Reis", "5521998761234")
    record = db.query(RegistrationToken).filter_by(token=token).one()
    assert record.used is True and record.client_id == created.id
    assert db.query(Notification).filter_by(user_id=user.id, titulo="Novo cliente cadastrado").count() == 1

    assert client.get(f"/clients/registration/{token}").json() == {
        "status": "used",
        "error": "Este link já foi utilizado.",
    }
    reuse = client.post(f"/clients/registration/{token}", json={"nome": "Outra", "email": "outra@example.com"})
    assert reuse.status_code == 400


def test_expired_and_unknown_links(client, user, auth_headers, db):
    token = new_registration_link(client, auth_headers(user))
    record = db.query(RegistrationToken).filter_by(token=token).one()
    record.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    assert client.get(f"/clients/registration/{token}").json()["status"] == "expired"
    assert client.get(f"/clients/registration/{'0' * 64}").json()["status"] == "not_found"
    assert client.get("/clients/registration/not-a-token").json()["status"] == "not_found"
    expired = client.post(f"/clients/registration/{token}", json={"nome": "Paula", "email": "paula@example.com"})
    assert expired.status_code == 400
    assert expired.json()["detail"] == "Link inválido ou expirado"


def test_registration_requires_email(client, user, auth_headers):
    token = new_registration_link(client, auth_headers(user))
    assert client.post(f"/clients/registration/{token}", json={"nome": "Paula"}).status_code == 422


def test_registration_respects_owner_client_limit(client, user, auth_headers, make_client, db):
    for index in range(3):
        make_client(user, nome=f"Cliente {index}")
    token = new_registration_link(client, auth_headers(user))

    response = client.post(f"/clients/registration/{token}", json={"nome": "Paula", "email": "paula@example.com"})
    assert response.status_code == 403
    assert db.query(RegistrationToken).filter_by(token=token).one().used is False
