from __future__ import annotations

from decimal import Decimal
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

_LAYOUT = """<!doctype html>
<html>
  <body style="margin:0;padding:0;background:#f3f4f6;font-family:Arial,sans-serif;color:#111111;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="padding:24px 12px;">
      <tr>
        <td align="center">
          <table role="presentation" width="100%" cellspacing="0" cellpadding="0"
                 style="max-width:640px;background:#ffffff;border:1px solid #e5e7eb;border-radius:14px;">
            <tr><td style="height:4px;background:#f97316;font-size:0;line-height:0;">&nbsp;</td></tr>
            <tr>
              <td style="padding:18px 22px 16px 22px;background:#0f1115;color:#ffffff;">
                <img src="{{ site_url }}/email-logo.svg" alt="Ward Studio logo" width="136" style="display:block;border:0;" />
                <h1 style="margin:12px 0 0 0;font-size:23px;line-height:1.25;">{{ title }}</h1>
              </td>
            </tr>
            <tr><td style="padding:20px 22px 16px 22px;">{% block body %}{% endblock %}</td></tr>
            <tr>
              <td style="padding:0 22px 20px 22px;font-size:12px;line-height:1.5;color:#6b7280;">
                Support: <a href="mailto:{{ support_email }}" style="color:#f97316;">{{ support_email }}</a><br />
                Services: <a href="mailto:{{ service_email }}" style="color:#f97316;">{{ service_email }}</a><br />
                <a href="{{ site_url }}" style="color:#9ca3af;">{{ site_host }}</a>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""

_SECURITY_NOTE = "For security, do not send passwords or API keys by email."

_TEMPLATES = {
    "layout.html": _LAYOUT,
    "order_client.html": """{% extends "layout.html" %}{% block body %}
<p>Hi {{ name }}, your project slot is confirmed.</p>
<div style="border:1px solid #e5e5e5;border-radius:10px;padding:12px;">
  <p><strong>Order ID:</strong> {{ order_id }}</p>
  <p><strong>Package:</strong> {{ tier_label }}</p>
  <p><strong>Add-ons:</strong> {{ addons }}</p>
  <p><strong>Deposit paid:</strong> {{ deposit }}</p>
  <p><strong>Remaining balance:</strong> {{ remaining }}</p>
</div>
<p><a href="{{ booking_url }}" style="background:#f97316;color:#ffffff;padding:10px 14px;border-radius:8px;">Book your strategy call</a></p>
<p><strong>Prepare these assets:</strong></p>
<ul><li>Business name/logo</li><li>6-12 photos</li><li>Service list + pricing</li><li>Booking preference</li></ul>
<p style="font-size:12px;color:#555555;">{{ security_note }}</p>
{% endblock %}""",
    "order_client.txt": """Payment confirmed for {{ order_id }}.
Package: {{ tier_label }}
Add-ons: {{ addons }}
Deposit paid: {{ deposit }}
Remaining balance: {{ remaining }}
Book your strategy call: {{ booking_url }}
Prepare: business name/logo, 6-12 photos, service list + pricing, booking preference.
{{ security_note }}""",
    "order_internal.html": """{% extends "layout.html" %}{% block body %}
<p>A new paid order was verified and is awaiting booking.</p>
<div style="border:1px solid #e5e5e5;border-radius:10px;padding:12px;">
  <p><strong>Order ID:</strong> {{ order_id }}</p>
  <p><strong>Customer:</strong> {{ customer_name }} ({{ customer_email }})</p>
  <p><strong>Package:</strong> {{ tier_label }}</p>
  <p><strong>Add-ons:</strong> {{ addons }}</p>
  <p><strong>Deposit:</strong> {{ deposit }}</p>
  <p><strong>Remaining:</strong> {{ remaining }}</p>
  <p><strong>Stripe session:</strong> {{ session_id }}</p>
  <p><strong>Timestamp:</strong> {{ timestamp }}</p>
  <p><strong>Status:</strong> Awaiting booking</p>
</div>
{% endblock %}""",
    "order_internal.txt": """New DetailFlow order {{ order_id }}
Customer: {{ customer_name }} ({{ customer_email }})
Package: {{ tier_label }}
Add-ons: {{ addons }}
Deposit: {{ deposit }}
Remaining: {{ remaining }}
Stripe session: {{ session_id }}
Timestamp: {{ timestamp }}
Status: Awaiting booking""",
    "booking_client.html": """{% extends "layout.html" %}{% block body %}
<p>Hi {{ name }}, your strategy call is confirmed.</p>
<p><strong>Date:</strong> {{ meeting_date }}</p>
<p><strong>Time:</strong> {{ meeting_time }}</p>
<p>Upload your assets before the call:</p>
<p><a href="{{ upload_url }}" style="background:#f97316;color:#ffffff;padding:10px 14px;border-radius:8px;">Secure upload link</a></p>
<p style="font-size:12px;color:#555555;">{{ security_note }}</p>
{% endblock %}""",
    "booking_client.txt": """Strategy call confirmed ({{ order_id }})
Date: {{ meeting_date }}
Time: {{ meeting_time }}
Upload assets: {{ upload_url }}
{{ security_note }}""",
    "booking_internal.html": """{% extends "layout.html" %}{% block body %}
<p>Client booking confirmed through {{ booking_provider }}.</p>
<div style="border:1px solid #e5e5e5;border-radius:10px;padding:12px;">
  <p><strong>Order ID:</strong> {{ order_id }}</p>
  <p><strong>Customer:</strong> {{ customer_name }} ({{ customer_email }})</p>
  <p><strong>Date:</strong> {{ meeting_date }}</p>
  <p><strong>Time:</strong> {{ meeting_time }}</p>
  <p><strong>Event ID:</strong> {{ event_id }}</p>
  <p><strong>Upload URL:</strong> {{ upload_url }}</p>
</div>
{% endblock %}""",
    "booking_internal.txt": """Booking confirmed ({{ order_id }})
Customer: {{ customer_name }} ({{ customer_email }})
Date: {{ meeting_date }}
Time: {{ meeting_time }}
Event ID: {{ event_id }}
Upload URL: {{ upload_url }}""",
    "config_internal.html": """{% extends "layout.html" %}{% block body %}
<p>A client submitted onboarding configuration details.</p>
<div style="border:1px solid #e5e5e5;border-radius:10px;padding:12px;">
  <p><strong>Order ID:</strong> {{ order_id }}</p>
  <p><strong>Customer:</strong> {{ customer_name }} ({{ customer_email }})</p>
  <p><strong>Package:</strong> {{ package_label }}</p>
  <p><strong>Add-ons:</strong> {{ addons }}</p>
  <p><strong>Asset links:</strong> {{ asset_links }}</p>
  <p><strong>Submitted:</strong> {{ submitted_at }}</p>
  <p><strong>Safe config warning:</strong> {{ safe_config_warning }}</p>
  <p><strong>Secrets notice:</strong> {{ security_note }}</p>
</div>
<h2>Generated Configuration Summary</h2>
<p>{{ config_sentence }}</p>
<h2>Generated Config JSON</h2>
<pre style="background:#111111;color:#f8f8f8;padding:10px;border-radius:8px;">{{ config_json }}</pre>
<h2>Handoff Summary</h2>
<pre style="background:#f5f5f5;padding:10px;border-radius:8px;">{{ handoff_summary }}</pre>
{% endblock %}""",
    "config_internal.txt": """Config submitted ({{ order_id }})
Customer: {{ customer_name }} ({{ customer_email }})
Package: {{ package_label }}
Add-ons: {{ addons }}
Asset links: {{ asset_links }}
Submitted: {{ submitted_at }}
Safe config warning: {{ safe_config_warning }}
Secrets notice: {{ security_note }}

Generated Configuration Summary:
{{ config_sentence }}

Generated Config JSON:
{{ config_json }}

Handoff Summary:
{{ handoff_summary }}""",
    "config_ack.html": """{% extends "layout.html" %}{% block body %}
<p>Your configuration details were received.</p>
<p><strong>Order ID:</strong> {{ order_id }}</p>
<p><strong>Package:</strong> {{ package_label }}</p>
<p><strong>Add-ons:</strong> {{ addons }}</p>
<h2>Generated Configuration Summary</h2>
<p>{{ config_sentence }}</p>
<p style="font-size:12px;color:#555555;">{{ security_note }}</p>
{% endblock %}""",
    "config_ack.txt": """Configuration received ({{ order_id }})
Package: {{ package_label }}
Add-ons: {{ addons }}

Generated Configuration Summary:
{{ config_sentence }}
{{ security_note }}""",
}

_environment = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def format_usd(amount: Decimal | float) -> str:
    return f"${Decimal(str(amount)):,.2f}"


def render(template: str, /, **context: Any) -> tuple[str, str]:
    """Renders the (html, text) pair for a template family.

    The family name is positional-only so templates can use a `name` variable.
    """
    context.setdefault("security_note", _SECURITY_NOTE)
    html = _environment.get_template(f"{template}.html").render(**context)
    text = _environment.get_template(f"{template}.txt").render(**context)
    return html, text
