import pytest

from therapypro.domain.reports.pdf import format_document
from therapypro.shared.formatters import format_brl

MARCH = {"start_date": "2025-03-01", "end_date": "2025-03-31"}


@pytest.fixture()
def premium(make_user):
    return make_user(plan="premium", cpf_cnpj="52998224725")


@pytest.fixture()
def march_activity(client, premium, auth_headers, make_client):
    headers = auth_headers(premium)
    ana = make_client(premium, nome="Ana", valor_sessao=None)
    bruno = make_client(premium, nome="Bruno", valor_sessao=None)

    def session(client_id, day, status):
        client.post(
            "/sessions", headers=headers, json={"client_id": client_id, "data": day, "horario": "10:00", "status": status}
        )

    def payment(client_id, valor, status, **dates):
        return client.post(
            "/payments", headers=headers, json={"client_id": client_id, "valor": valor, "status": status, **dates}
        ).json()

    session(ana.id, "2025-03-05", "realizada")
    session(ana.id, "2025-03-12", "realizada")
    session(bruno.id, "2025-03-07", "falta")
    session(ana.id, "2025-04-02", "realizada")

    paid = payment(ana.id, 15000, "pago", data_pagamento="2025-03-05")
    pending = payment(ana.id, 15000, "pendente", data_vencimento="2025-03-12")
    payment(bruno.id, 12000, "cancelado", data_vencimento="2025-03-07")
    payment(bruno.id, 20000, "pago", data_pagamento="2025-02-28")
    return {"headers": headers, "paid": paid, "pending": pending}


def test_financial_report_for_period(client, march_activity):
    report = client.get("/reports/financial", headers=march_activity["headers"], params=MARCH).json()

    assert report["periodo"] == {"inicio": "2025-03-01", "fim": "2025-03-31"}
    assert report["sessoes"] == {
        "total": 3,
        "por_status": {"agendada": 0, "realizada": 2, "cancelada": 0, "falta": 1},
    }
    assert report["receita"] == {"recebido": 15000, "pendente": 15000, "cancelado": 12000}

    ana, bruno = report["por_cliente"]
    assert (ana["nome"], ana["recebido"], ana["pendente"], ana["pagamentos"], ana["sessoes_realizadas"]) == (
        "Ana",
        15000,
        15000,
        2,
        2,
    )
    assert (bruno["nome"], bruno["cancelado"], bruno["sessoes_realizadas"]) == ("Bruno", 12000, 0)


def test_inverted_period_rejected(client, premium, auth_headers):
    response = client.get(
        "/reports/financial", headers=auth_headers(premium), params={"start_date": "2025-03-31", "end_date": "2025-03-01"}
    )
    assert response.status_code == 400


def test_payments_csv(client, march_activity):
    response = client.get("/reports/payments.csv", headers=march_activity["headers"], params=MARCH)
    assert response.status_code == 200
    assert "pagamentos_2025-03-01_2025-03-31.csv" in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert len(lines) == 4
    assert "05/03/2025" in response.text
    assert "28/02/2025" not in response.text


def test_receipt_only_for_paid_payments(client, march_activity):
    headers = march_activity["headers"]
    ok = client.get(f"/reports/receipts/{march_activity['paid']['id']}", headers=headers)
    assert ok.status_code == 200
    assert ok.headers["content-type"] == "application/pdf"
    assert ok.content.startswith(b"%PDF")

    assert client.get(f"/reports/receipts/{march_activity['pending']['id']}", headers=headers).status_code == 400
    assert client.get("/reports/receipts/9999", headers=headers).status_code == 404


def test_period_pdf_is_premium_only(client, march_activity, user, auth_headers):
    assert client.get("/reports/financial.pdf", headers=auth_headers(user)).status_code == 403

    response = client.get("/reports/financial.pdf", headers=march_activity["headers"], params=MARCH)
    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")


def test_formatting_helpers():
    assert format_brl(123456) == "R$ 1.234,56"
    assert format_brl(-5) == "-R$ 0,05"
    assert format_document("52998224725") == "529.982.247-25"
    assert format_document("11222333000181") == "11.222.333/0001-81"
