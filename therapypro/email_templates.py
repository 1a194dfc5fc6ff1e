"""
MJML Email Templates
Transactional emails sent to TherapyPro professionals
"""

from html import escape
from typing import Optional

from .config import FRONTEND_URL

THEME = {
    "primary": "#7c3aed",
    "primary_light": "#ede9fe",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button href="{cta_url}" background-color="{THEME['primary']}" color="#ffffff"
              font-weight="600" border-radius="8px" padding="18px 40px" font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 16px 40px">
          <mj-column>
            <mj-text font-size="22px" font-weight="700" color="{THEME['primary']}" padding="0">TherapyPro</mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="24px 0 0 0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 40px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>
            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              Você recebeu este email porque possui uma conta no TherapyPro.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def twofa_code_template(code: str) -> str:
    content = f"""
    <mj-text>Use o código abaixo para concluir seu login:</mj-text>
    <mj-text align="center" font-size="36px" font-weight="700" letter-spacing="8px"
      color="{THEME['primary']}" container-background-color="{THEME['primary_light']}" padding="20px">
      {code}
    </mj-text>
    <mj-text color="{THEME['text_muted']}" font-size="14px">
      O código expira em 10 minutos. Se você não tentou entrar, altere sua senha.
    </mj-text>
    """
    return get_base_template(
        title="Seu código de verificação",
        preview_text=f"Seu código é {code}",
        content_sections=content,
    )


def twofa_reset_template(reset_link: str) -> str:
    content = """
    <mj-text>Recebemos um pedido para redefinir a autenticação em dois fatores da sua conta.</mj-text>
    <mj-text color="#64748b" font-size="14px">
      O link é válido por 1 hora. Se você não fez este pedido, ignore este email.
    </mj-text>
    """
    return get_base_template(
        title="Redefinir autenticação em dois fatores",
        preview_text="Redefina seu 2FA",
        content_sections=content,
        cta_url=reset_link,
        cta_label="Redefinir 2FA",
    )


def security_notification_template(event: str, details: str) -> str:
    content = f"""
    <mj-text><strong>{escape(event)}</strong></mj-text>
    <mj-text>{escape(details)}</mj-text>
    <mj-text color="{THEME['danger']}" font-size="14px">
      Se não foi você, entre em contato com o suporte imediatamente.
    </mj-text>
    """
    return get_base_template(
        title="Alerta de segurança",
        preview_text=event,
        content_sections=content,
    )


def payout_sent_template(user_name: str, amount: str, method: str) -> str:
    content = f"""
    <mj-text>Olá {escape(user_name or '')},</mj-text>
    <mj-text>Sua comissão de indicação de <strong>{amount}</strong> foi enviada via {method.upper()}.</mj-text>
    <mj-text color="{THEME['text_muted']}" font-size="14px">
      O valor pode levar até 1 dia útil para aparecer na sua conta.
    </mj-text>
    """
    return get_base_template(
        title="Pagamento de comissão enviado",
        preview_text=f"{amount} a caminho",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/indicacoes",
        cta_label="Ver minhas indicações",
    )


def payout_requested_template(user_name: str, amount: str) -> str:
    content = f"""
    <mj-text>Olá {escape(user_name or '')},</mj-text>
    <mj-text>Recebemos sua solicitação de saque de <strong>{amount}</strong>.</mj-text>
    <mj-text>O pagamento será processado no próximo ciclo de pagamentos.</mj-text>
    """
    return get_base_template(
        title="Solicitação de saque recebida",
        preview_text="Solicitação recebida",
        content_sections=content,
    )


def session_reminder_template(user_name: str, sessions: list[dict]) -> str:
    rows = "<br/>".join(
        f"{escape(s['horario'])} - {escape(s['client_name'])}" for s in sessions
    )
    content = f"""
    <mj-text>Olá {escape(user_name or '')}, estas são suas sessões de amanhã:</mj-text>
    <mj-text padding="0 0 0 20px">{rows}</mj-text>
    """
    return get_base_template(
        title="Sessões de amanhã",
        preview_text=f"Você tem {len(sessions)} sessão(ões) amanhã",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/agenda",
        cta_label="Abrir agenda",
    )
