"""
Notification Templates

Lookup order for (event type, channel):
1. organization template (active)
2. global default (organization_id IS NULL, is_default, active)
3. built-in fallback
Missing everywhere -> TemplateNotFoundError.

Rendering substitutes {{variable}} / {{nested.path}} from the event payload
and strips whatever placeholders remain unresolved.
"""

import html
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import TemplateNotFoundError
from ..models.notification import Channel, NotificationTemplate

PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")
TAG_RE = re.compile(r"<[^>]+>")
BLANK_LINES_RE = re.compile(r"\n\s*\n+")


@dataclass
class TemplateContent:
    subject: Optional[str]
    body: str
    variables: List[str] = field(default_factory=list)
    source: str = "builtin"


# (title, message) used for every channel when nothing is stored
BUILTIN_TEMPLATES: Dict[str, tuple] = {
    "campaign_created": ("New campaign: {{campaignName}}", "Campaign {{campaignName}} was created for {{advertiserName}}."),
    "campaign_approved": ("Campaign approved: {{campaignName}}", "Campaign {{campaignName}} has been approved."),
    "campaign_rejected": ("Campaign rejected: {{campaignName}}", "Campaign {{campaignName}} was rejected. {{reason}}"),
    "campaign_approval_requested": ("Approval needed: {{campaignName}}", "Campaign {{campaignName}} reached {{probability}}% and needs approval."),
    "admin_approval_requested": ("Admin approval requested: {{campaignName}}", "Campaign {{campaignName}} is at {{probability}}% and requires admin approval."),
    "talent_approval_requested": ("Talent approval requested: {{campaignName}}", "Please review the {{adType}} spot for {{showName}}."),
    "schedule_built": ("Schedule built: {{campaignName}}", "A schedule with {{spotCount}} spot(s) was built for {{campaignName}}."),
    "schedule_committed": ("Schedule committed: {{reservationNumber}}", "{{message}}"),
    "bulk_placement_failed": ("Bulk placement incomplete: {{reservationNumber}}", "{{message}}"),
    "inventory_reserved": ("Inventory held: {{reservationNumber}}", "{{itemCount}} slot(s) held until {{expiresAt}}."),
    "inventory_released": ("Inventory released: {{reservationNumber}}", "Reservation {{reservationNumber}} was released. {{reason}}"),
    "reservation_confirmed": ("Reservation confirmed: {{reservationNumber}}", "Reservation {{reservationNumber}} is confirmed as order {{orderNumber}}."),
    "reservation_expired": ("Hold expired: {{reservationNumber}}", "The hold on reservation {{reservationNumber}} expired and its inventory was released."),
    "order_created": ("Order created: {{orderNumber}}", "Order {{orderNumber}} was created from reservation {{reservationNumber}}."),
    "inventory_conflict": ("Inventory conflict", "{{message}}"),
    "category_conflict": ("Competitive conflict: {{campaignName}}", "{{advertiserName}} overlaps a competing campaign in {{categoryName}}."),
    "rate_delta_detected": ("Rate card variance: {{campaignName}}", "Held rates for {{campaignName}} differ from the rate card by {{variancePercent}}% (threshold {{thresholdPercent}}%)."),
    "invoice_generated": ("Invoice generated: {{invoiceNumber}}", "Invoice {{invoiceNumber}} for {{amount}} was generated."),
    "invoice_overdue": ("Invoice overdue: {{invoiceNumber}}", "Invoice {{invoiceNumber}} is overdue."),
    "payment_received": ("Payment received: {{invoiceNumber}}", "Payment of {{amount}} received for invoice {{invoiceNumber}}."),
}

EMAIL_WRAPPER = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333; margin: 0; padding: 0;">
  <div style="max-width: 600px; margin: 0 auto;">
    <div style="background: #1976d2; color: #fff; padding: 16px 24px;">
      <h2 style="margin: 0;">PodcastFlow Pro</h2>
    </div>
    <div style="padding: 24px;">
      {content}
    </div>
    <div style="padding: 16px 24px; font-size: 12px; color: #888;">
      {organization} &middot; You are receiving this because of your notification settings.
    </div>
  </div>
</body>
</html>"""


def lookup(data: Dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def render(text: Optional[str], variables: Dict[str, Any]) -> str:
    """Substitute {{placeholders}}; unresolved ones render as empty strings."""
    if not text:
        return ""

    def replace(match):
        value = lookup(variables, match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_RE.sub(replace, text).strip()


def strip_tags(content: str) -> str:
    text = TAG_RE.sub("", content)
    text = html.unescape(text)
    return BLANK_LINES_RE.sub("\n\n", text).strip()


def wrap_email_html(body: str, organization_name: Optional[str] = None) -> str:
    if "<html" in body.lower():
        return body
    content = body if TAG_RE.search(body) else "<p>" + html.escape(body).replace("\n", "<br>") + "</p>"
    return EMAIL_WRAPPER.format(content=content, organization=html.escape(organization_name or "PodcastFlow Pro"))


class TemplateStore:
    def __init__(self, db: Session):
        self.db = db

    def find_template(self, event_type: str, channel: str, organization_id: Optional[str]) -> TemplateContent:
        base = self.db.query(NotificationTemplate).filter(
            NotificationTemplate.event_type == event_type,
            NotificationTemplate.channel == channel,
            NotificationTemplate.is_active.is_(True),
        )

        template = None
        if organization_id:
            template = base.filter(NotificationTemplate.organization_id == organization_id) \
                .order_by(NotificationTemplate.is_default.desc(), NotificationTemplate.updated_at.desc()).first()
        if template is None:
            template = base.filter(
                NotificationTemplate.organization_id.is_(None),
                NotificationTemplate.is_default.is_(True),
            ).first()

        if template is not None:
            return TemplateContent(
                subject=template.subject,
                body=template.body,
                variables=list(template.variables or []),
                source="organization" if template.organization_id else "default",
            )

        builtin = BUILTIN_TEMPLATES.get(event_type)
        if builtin is None:
            raise TemplateNotFoundError(event_type, channel)
        subject, body = builtin
        if channel == Channel.EMAIL.value:
            body = f"<p>{body}</p>"
        return TemplateContent(subject=subject, body=body, source="builtin")


@dataclass
class RenderedMessage:
    subject: str
    body: str
    text_body: str
    html_body: Optional[str] = None


def render_message(
    template: TemplateContent,
    channel: str,
    variables: Dict[str, Any],
) -> RenderedMessage:
    subject = render(template.subject, variables) or str(variables.get("title") or "")
    body = render(template.body, variables) or str(variables.get("message") or "")
    if channel == Channel.EMAIL.value:
        html_body = wrap_email_html(body, variables.get("organizationName"))
        return RenderedMessage(subject=subject, body=body, text_body=strip_tags(body), html_body=html_body)
    return RenderedMessage(subject=subject, body=body, text_body=strip_tags(body))
