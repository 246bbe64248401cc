"""
Transactional email for House of Muziris, sent through Resend.

Templates are plain HTML strings with inline styles so they survive mail
clients that strip <style> blocks. Every sender returns (ok, error) and
never raises; callers decide whether a failed send matters.
"""

import logging
from datetime import datetime, timezone
from html import escape
from typing import Dict, List, Optional, Tuple

import resend

from config import PRIMARY_CURRENCY, RESEND_API_KEY, RESEND_FROM_EMAIL, SITE_URL

logger = logging.getLogger(__name__)

CANVAS = "#F0EFEA"
INK = "#1A1A1A"
GOLD = "#C5A059"
MUTED = "#6B6B6B"
RULE = "#E5E3DE"


def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    if not RESEND_API_KEY:
        return False, "Resend API key is not configured."

    payload: Dict[str, object] = {
        "from": RESEND_FROM_EMAIL,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text

    resend.api_key = RESEND_API_KEY
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        logger.error("Failed to send email %r: %s", subject, exc)
        return False, str(exc)

    if not isinstance(response, dict) or not response.get("id"):
        logger.error("Unexpected Resend response for %r: %s", subject, response)
        return False, str(response)

    return True, None


def _layout(recipient: str, tagline: str, body: str, cta_text: Optional[str] = None,
            cta_link: Optional[str] = None) -> str:
    cta = ""
    if cta_text and cta_link:
        cta = f"""
              <div style="text-align:center;margin:32px 0;">
                <a href="{escape(cta_link)}" style="display:inline-block;padding:16px 40px;background-color:{GOLD};color:{INK};text-decoration:none;font-size:16px;border:2px solid {INK};">{escape(cta_text)}</a>
              </div>"""
    year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  </head>
  <body style="margin:0;padding:0;font-family:'Inter',Arial,sans-serif;background-color:{CANVAS};">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color:{CANVAS};padding:40px 20px;">
      <tr>
        <td align="center">
          <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:600px;background-color:#FFFFFF;border:1px solid {RULE};">
            <tr>
              <td style="padding:40px 40px 24px;text-align:center;border-bottom:1px solid {RULE};">
                <h1 style="margin:0;font-family:'Playfair Display',Georgia,serif;font-size:30px;color:{INK};">House of Muziris</h1>
                <p style="margin:8px 0 0;font-size:11px;color:{GOLD};text-transform:uppercase;letter-spacing:2px;">{escape(tagline)}</p>
              </td>
            </tr>
            <tr>
              <td style="padding:40px;color:{INK};font-size:16px;line-height:1.7;">
                {body}{cta}
              </td>
            </tr>
            <tr>
              <td style="padding:24px 40px;background-color:{CANVAS};border-top:1px solid {RULE};text-align:center;font-size:12px;color:{MUTED};">
                <p style="margin:0 0 6px;">&copy; {year} House of Muziris. Curating Heritage, One Spice at a Time.</p>
                <p style="margin:0;">This email was sent to {escape(recipient)}.</p>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>"""


def _p(text: str, color: str = INK) -> str:
    return f'<p style="margin:0 0 20px;color:{color};">{text}</p>'


def send_welcome_email(email: str, name: str):
    """Acknowledge a freshly submitted membership application."""
    body = (
        _p(f"Dear {escape(name)},")
        + _p("Thank you for your interest in joining the House of Muziris Guild!")
        + _p("We have received your membership application and our team is reviewing it. "
             "You will receive an email as soon as it has been processed.", MUTED)
        + _p("We appreciate your patience and look forward to welcoming you.", MUTED)
    )
    text = (
        f"Dear {name},\n\nThank you for applying to the House of Muziris Guild. "
        "We have received your application and will email you once it has been reviewed.\n\n"
        "House of Muziris"
    )
    return send_email(email, "Thank You for Applying to the House of Muziris Guild",
                      _layout(email, "Application Received", body), text)


def verification_link(token: str) -> str:
    return f"{SITE_URL}/auth/verify-email?token={token}"


def send_approval_with_setup_email(email: str, name: str, token: str, ttl_hours: int):
    link = verification_link(token)
    body = (
        _p(f"Congratulations, {escape(name)}.")
        + _p(f'Your membership to House of Muziris has been <strong style="color:{GOLD};">approved</strong>.')
        + _p("Please verify your email address using the button below. Once verified, sign in with "
             "your email and you will be asked to create a password for future logins.", MUTED)
        + _p(f"This secure link expires in {ttl_hours} hour{'s' if ttl_hours != 1 else ''}.", MUTED)
    )
    text = (
        f"Dear {name},\n\nYour membership to House of Muziris has been approved.\n\n"
        f"Verify your email to get started:\n{link}\n\n"
        f"This link expires in {ttl_hours} hour(s).\n\nWelcome to the family,\nHouse of Muziris"
    )
    return send_email(email, "Welcome to House of Muziris - Membership Approved",
                      _layout(email, "Membership Approved", body, "Verify Your Email", link), text)


def send_rejection_email(email: str, name: str, reason: Optional[str] = None):
    body = (
        _p(f"Dear {escape(name)},")
        + _p("Thank you for your interest in joining the House of Muziris Guild.")
        + _p("After careful review, we are unable to approve your membership application at this time.", MUTED)
    )
    if reason:
        body += _p(f"<strong>Reason:</strong> {escape(reason)}")
    body += _p("If you have any questions or would like to reapply in the future, please contact us.", MUTED)
    text = (
        f"Dear {name},\n\nAfter careful review, we are unable to approve your House of Muziris Guild "
        "application at this time."
        + (f"\n\nReason: {reason}" if reason else "")
        + "\n\nHouse of Muziris"
    )
    return send_email(email, "Update on Your House of Muziris Guild Application",
                      _layout(email, "Guild Application", body), text)


def send_sign_in_link_email(email: str, link: str):
    body = (
        _p("Welcome back to House of Muziris!")
        + _p("Click the button below to securely sign in to your account. "
             "This link will expire in 60 minutes and can only be used once.", MUTED)
    )
    text = f"Sign in to House of Muziris:\n{link}\n\nThis link expires in 60 minutes."
    return send_email(email, "Your Sign-In Link for House of Muziris",
                      _layout(email, "Secure Sign-In", body, "Sign In to Your Account", link), text)


def send_order_confirmation_email(email: str, name: str, order_number: str, items: List[dict],
                                  total: float, points_earned: int, discount: float = 0.0):
    rows = "".join(
        f"""
                  <tr>
                    <td style="padding:8px 0;border-bottom:1px solid {RULE};">{escape(item['name'])} <span style="color:{MUTED};">&times; {item['quantity']}</span></td>
                    <td style="padding:8px 0;border-bottom:1px solid {RULE};text-align:right;">${item['price'] * item['quantity']:.2f}</td>
                  </tr>"""
        for item in items
    )
    discount_row = ""
    if discount:
        discount_row = f"""
                  <tr>
                    <td style="padding:8px 0;text-align:right;color:{MUTED};">Loyalty discount</td>
                    <td style="padding:8px 0;text-align:right;color:{MUTED};">-${discount:.2f}</td>
                  </tr>"""
    body = f"""
              <h2 style="margin:0 0 12px;font-family:'Playfair Display',Georgia,serif;font-size:22px;">Thank you, {escape(name)}!</h2>
              {_p("Your order has been received and is awaiting payment confirmation.", MUTED)}
              <div style="background-color:{CANVAS};padding:16px;margin-bottom:20px;">
                <p style="margin:0 0 4px;font-size:10px;color:#999;text-transform:uppercase;">Order Number</p>
                <p style="margin:0;font-family:monospace;font-size:15px;">{escape(order_number)}</p>
              </div>
              <table style="width:100%;margin-bottom:20px;font-size:14px;">
                <tbody>{rows}{discount_row}
                  <tr>
                    <td style="padding:12px 0 0;text-align:right;font-weight:600;">Total</td>
                    <td style="padding:12px 0 0;text-align:right;font-size:18px;color:{GOLD};">${total:.2f}</td>
                  </tr>
                </tbody>
              </table>
              <div style="background-color:{GOLD};padding:16px;text-align:center;color:#FFFFFF;">
                <p style="margin:0;font-size:22px;font-weight:600;">+{points_earned} Points Earned</p>
                <p style="margin:6px 0 0;font-size:11px;">10 points = $1 discount on your next order</p>
              </div>"""
    item_lines = "\n".join(
        f"- {item['name']} x {item['quantity']}: ${item['price'] * item['quantity']:.2f}" for item in items
    )
    text = (
        f"Dear {name},\n\nThank you for your order!\n\nOrder Number: {order_number}\n"
        f"Total: {PRIMARY_CURRENCY} {total:.2f}\n\nItems:\n{item_lines}\n\n"
        f"You earned {points_earned} loyalty points (10 points = $1 off your next order).\n\n"
        "House of Muziris"
    )
    return send_email(email, f"Order Confirmed #{order_number} - House of Muziris",
                      _layout(email, "Order Confirmed", body), text)
