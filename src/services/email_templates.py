"""
HTML email templates

Each renderer takes the parameter bag and returns (subject, html).
"""

from datetime import datetime
from html import escape
from typing import Any, Callable, Dict, Tuple

from config.config import WEBAPP_URL, TRADINGVIEW_URL
from src.core.enums import EmailTemplate


def _param(params: Dict[str, Any], key: str, default: str = "") -> str:
    value = params.get(key)
    if value is None or value == "":
        return escape(default)
    return escape(str(value))


def _button(url: str, label: str) -> str:
    return (
        '<div style="margin: 32px 0;">'
        f'<a href="{url}" style="background: #3182CE; color: #fff; padding: 12px 24px; '
        f'border-radius: 6px; text-decoration: none; font-weight: bold;">{label}</a>'
        "</div>"
    )


def _layout(title: str, body: str, footer: str = "AlgoMakers.Ai team") -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto;">
      <h1 style="color: #2D3748;">{title}</h1>
      {body}
      <hr style="margin: 32px 0; border: none; border-top: 1px solid #E2E8F0;">
      <div style="color: #4A5568; font-size: 0.95em; margin-bottom: 16px;">{footer}</div>
      <small style="color: #A0AEC0;">&copy; {datetime.now().year} AlgoMakers.Ai</small>
    </div>
    """


def invite_pending_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = "⏳ Your TradingView invite is being processed"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        f"<p>Your subscription to <strong>{_param(params, 'pair')}</strong> – "
        f"<strong>{_param(params, 'period')}</strong> is confirmed.</p>"
        "<p>Our admin is now processing your TradingView invite for username: "
        f"<span style=\"color: #3182CE;\">{_param(params, 'tradingViewUsername')}</span>.</p>"
        "<p>You’ll get another email once the invite is completed.</p>"
        + _button(_param(params, "dashboardUrl", f"{WEBAPP_URL}/dashboard"), "Check Subscription Status")
    )
    return subject, _layout("We’re preparing your access", body)


def invite_sent_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = "📨 Your TradingView invite has been sent"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        f"<p>We’ve sent the invite for <strong>{_param(params, 'pair')}</strong> to "
        f"<span style=\"color: #3182CE;\">{_param(params, 'tradingViewUsername')}</span>.</p>"
        "<p>Accept it from the notifications (bell icon) in your TradingView account.</p>"
        + _button(_param(params, "tradingViewUrl", TRADINGVIEW_URL), "Open TradingView")
    )
    return subject, _layout("Your invite is on its way", body)


def invite_completed_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = "🎉 Your TradingView invite is ready!"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        "<p>Great news! We’ve sent a TradingView invite to your account: "
        f"<span style=\"color: #3182CE;\">{_param(params, 'tradingViewUsername')}</span>.</p>"
        '<h2 style="color: #4A5568; font-size: 1.1em;">Subscription details:</h2>'
        '<ul style="list-style: none; padding: 0;">'
        f"<li><strong>Pair:</strong> {_param(params, 'pair')}</li>"
        f"<li><strong>Period:</strong> {_param(params, 'period')}</li>"
        f"<li><strong>Active until:</strong> {_param(params, 'expiryDate')}</li>"
        "</ul>"
        "<p>👉 Please log in to your TradingView account and accept the invite to begin.</p>"
        + _button(_param(params, "tradingViewUrl", TRADINGVIEW_URL), "Open TradingView")
    )
    return subject, _layout("Start using your subscription today", body, "Happy trading with AlgoMakers.Ai 🚀")


def invite_canceled_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = "Your TradingView invite was cancelled"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        f"<p>The TradingView invite for <strong>{_param(params, 'pair')}</strong> – "
        f"<strong>{_param(params, 'period')}</strong> has been cancelled.</p>"
        "<p>If you think this is a mistake, please contact support.</p>"
        + _button(_param(params, "dashboardUrl", f"{WEBAPP_URL}/dashboard"), "Go to Dashboard")
    )
    return subject, _layout("Invite cancelled", body)


def payment_receipt_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = f"✅ Payment received for {_param(params, 'pair', 'your')} subscription"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        f"<p>We’ve received your payment for <strong>{_param(params, 'pair')}</strong> – "
        f"<strong>{_param(params, 'period')}</strong>.</p>"
        '<ul style="list-style: none; padding: 0;">'
        f"<li><strong>Amount:</strong> {_param(params, 'amount')} USDT</li>"
        f"<li><strong>Network:</strong> {_param(params, 'network')}</li>"
        f"<li><strong>Transaction ID:</strong> {_param(params, 'txHash', '-')}</li>"
        f"<li><strong>Expiry:</strong> {_param(params, 'expiryDate')}</li>"
        "</ul>"
        "<p>Next step: 🎯 Our admin will send your TradingView invite shortly to "
        f"<strong>{_param(params, 'tradingViewUsername')}</strong>.</p>"
        + _button(_param(params, "dashboardUrl", f"{WEBAPP_URL}/dashboard"), "Go to Dashboard")
    )
    return subject, _layout("Your payment was successful!", body, "Thank you for choosing AlgoMakers.Ai 🚀")


def renewal_reminder_email(params: Dict[str, Any]) -> Tuple[str, str]:
    subject = "⏳ Your subscription is expiring soon – renew today"
    body = (
        f"<p>Hello {_param(params, 'firstName', 'there')},</p>"
        f"<p>Your subscription to <strong>{_param(params, 'pair')}</strong> – "
        f"<strong>{_param(params, 'period')}</strong> will expire on "
        f"<strong>{_param(params, 'expiryDate')}</strong>.</p>"
        + _button(_param(params, "renewalUrl", f"{WEBAPP_URL}/dashboard/billing"), "Renew My Subscription")
    )
    return subject, _layout("Don't lose your access", body, "Thank you for being part of AlgoMakers.Ai 💡")


def custom_email(params: Dict[str, Any]) -> Tuple[str, str]:
    # Raw HTML from staff, not escaped
    subject = str(params.get("subject") or "Message from AlgoMakers.Ai")
    return subject, str(params.get("html") or "")


TEMPLATES: Dict[str, Callable[[Dict[str, Any]], Tuple[str, str]]] = {
    EmailTemplate.INVITE_PENDING.value: invite_pending_email,
    EmailTemplate.INVITE_SENT.value: invite_sent_email,
    EmailTemplate.INVITE_COMPLETED.value: invite_completed_email,
    EmailTemplate.INVITE_CANCELED.value: invite_canceled_email,
    EmailTemplate.PAYMENT_RECEIPT.value: payment_receipt_email,
    EmailTemplate.RENEWAL_REMINDER.value: renewal_reminder_email,
    EmailTemplate.CUSTOM.value: custom_email,
}


def render_template(template: str, params: Dict[str, Any]) -> Tuple[str, str]:
    """
    Render (subject, html)

    Raises:
        ValueError: unknown template
    """
    renderer = TEMPLATES.get(getattr(template, "value", template))
    if renderer is None:
        raise ValueError(f"Unknown email template: {template}")
    return renderer(params or {})
