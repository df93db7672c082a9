"""Subjects, in-app messages and HTML bodies for every alert email.

Each builder returns a :class:`RenderedEmail`.  User-supplied values are
HTML-escaped before being substituted into the bodies.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any, Final

from src.models.enums import NotificationType


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    html: str


def map_url(latitude: float, longitude: float) -> str:
    return f"https://www.google.com/maps?q={latitude},{longitude}"


def _fmt_time(when: datetime) -> str:
    return when.strftime("%Y-%m-%d %H:%M:%S UTC")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_MAP_BUTTON: Final[str] = (
    '<p style="margin-top: 20px;">'
    '<a href="{url}" style="background-color: {color}; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 4px; display: inline-block;">'
    "View Location on Google Maps</a></p>"
)

_SOS_HTML: Final[str] = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #fff3cd; padding: 20px; border: 3px solid #dc3545;">
  <h1 style="color: #dc3545; text-align: center;">EMERGENCY SOS ALERT</h1>
  <div style="background-color: white; padding: 20px; margin: 20px 0; border-left: 4px solid #dc3545;">
    <h2>Emergency Contact Request</h2>
    <p><strong>{user}</strong> has triggered an emergency SOS alert and needs immediate assistance.</p>
    <h3>Location Details:</h3>
    <ul>
      <li><strong>Latitude:</strong> {latitude}</li>
      <li><strong>Longitude:</strong> {longitude}</li>
      <li><strong>Time:</strong> {time}</li>
    </ul>
    {map_button}
  </div>
  <p style="color: #856404; font-size: 14px; text-align: center;">This is an automated emergency alert. Please take immediate action.</p>
</div>
"""

_AUTO_SOS_HTML: Final[str] = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #fff3cd; padding: 20px; border: 3px solid #dc3545;">
  <h1 style="color: #dc3545; text-align: center;">AUTOMATIC SOS ALERT</h1>
  <div style="background-color: white; padding: 20px; margin: 20px 0; border-left: 4px solid #dc3545;">
    <h2>30-Minute Timeout Triggered</h2>
    <p><strong>{user}</strong> did not respond to a location request within the 30-minute window.</p>
    <div style="background-color: #f8d7da; padding: 15px; margin: 15px 0; border-left: 4px solid #dc3545;">
      <h3>IMPORTANT</h3>
      <p>This automatic SOS was triggered because:</p>
      <ul>
        <li><strong>{requester}</strong> requested their location at <strong>{created}</strong></li>
        <li>The request expired at <strong>{expired}</strong></li>
        <li>No response was received within 30 minutes</li>
      </ul>
      <p><strong>This may indicate an emergency situation.</strong></p>
    </div>
    <h3>Action Required:</h3>
    <p>As an emergency contact for <strong>{user}</strong>, please attempt to reach them immediately through other means:</p>
    <ul>
      <li>Phone call</li>
      <li>Text message</li>
      <li>Visit their last known location if appropriate</li>
      <li>Contact emergency services if you cannot reach them</li>
    </ul>
    <p><strong>Alert triggered at:</strong> {time}</p>
    {requester_note}
  </div>
  <p style="color: #856404; font-size: 14px; text-align: center;">This is an automated safety alert. Please take immediate action.</p>
</div>
"""

_REQUESTER_NOTE: Final[str] = (
    '<p style="font-size: 14px; color: #666;">Note: You are receiving this as one of '
    "{user}'s emergency contacts. The original location request was made by {requester}.</p>"
)

_LOCATION_REQUEST_HTML: Final[str] = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #e7f3ff; padding: 20px; border: 2px solid #0056b3;">
  <h1 style="color: #0056b3; text-align: center;">Location Request</h1>
  <div style="background-color: white; padding: 20px; margin: 20px 0;">
    <p><strong>{requester}</strong> (one of your emergency contacts) is requesting your current location.</p>
    <div style="background-color: #fff3cd; padding: 15px; margin: 15px 0; border-left: 4px solid #ffc107;">
      <h3 style="margin-top: 0;">Important</h3>
      <p>You have <strong>30 minutes</strong> to respond to this request.</p>
      <p>If you don't respond within 30 minutes, an <strong>automatic SOS</strong> will be triggered and sent to ALL your emergency contacts.</p>
    </div>
    <p><strong>Expires at:</strong> {expires}</p>
    <p style="margin-top: 20px;">Please log in to your account to accept or deny this request.</p>
  </div>
  <p style="color: #004085; font-size: 14px; text-align: center;">This is an automated notification from one of your emergency contacts.</p>
</div>
"""

_LOCATION_SHARED_HTML: Final[str] = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #d4edda; padding: 20px; border: 2px solid #28a745;">
  <h1 style="color: #155724; text-align: center;">Location Shared</h1>
  <div style="background-color: white; padding: 20px; margin: 20px 0;">
    <p><strong>{user}</strong> has accepted your location request and shared their current location.</p>
    <h3>Location Details:</h3>
    <ul>
      <li><strong>Latitude:</strong> {latitude}</li>
      <li><strong>Longitude:</strong> {longitude}</li>
      <li><strong>Accuracy:</strong> {accuracy}</li>
      <li><strong>Time:</strong> {time}</li>
    </ul>
    {map_button}
  </div>
  <p style="color: #155724; font-size: 14px; text-align: center;">Location shared voluntarily by the user.</p>
</div>
"""

_LOCATION_DENIED_HTML: Final[str] = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #f8d7da; padding: 20px; border: 2px solid #dc3545;">
  <h1 style="color: #721c24; text-align: center;">Location Request Denied</h1>
  <div style="background-color: white; padding: 20px; margin: 20px 0;">
    <p><strong>{user}</strong> has declined your location request.</p>
    <p><strong>Time:</strong> {time}</p>
    <div style="background-color: #fff3cd; padding: 15px; margin: 15px 0; border-left: 4px solid #ffc107;">
      <p><strong>Note:</strong> The user has actively responded and denied the location request. No automatic SOS will be triggered.</p>
    </div>
  </div>
  <p style="color: #721c24; font-size: 14px; text-align: center;">User has chosen not to share their location at this time.</p>
</div>
"""


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def sos_email(user_email: str, latitude: float, longitude: float, at: datetime) -> RenderedEmail:
    html = _SOS_HTML.format(
        user=escape(user_email),
        latitude=latitude,
        longitude=longitude,
        time=_fmt_time(at),
        map_button=_MAP_BUTTON.format(url=map_url(latitude, longitude), color="#dc3545"),
    )
    return RenderedEmail(subject="EMERGENCY SOS ALERT", html=html)


def auto_sos_email(
    user_email: str,
    requester_email: str,
    recipient_email: str,
    created_at: datetime,
    expires_at: datetime,
    at: datetime,
) -> RenderedEmail:
    note = ""
    if recipient_email.lower() != requester_email.lower():
        note = _REQUESTER_NOTE.format(user=escape(user_email), requester=escape(requester_email))
    html = _AUTO_SOS_HTML.format(
        user=escape(user_email),
        requester=escape(requester_email),
        created=_fmt_time(created_at),
        expired=_fmt_time(expires_at),
        time=_fmt_time(at),
        requester_note=note,
    )
    return RenderedEmail(subject="AUTOMATIC SOS ALERT - No Response", html=html)


def location_request_email(requester_email: str, expires_at: datetime) -> RenderedEmail:
    html = _LOCATION_REQUEST_HTML.format(requester=escape(requester_email), expires=_fmt_time(expires_at))
    return RenderedEmail(subject="Location Request from Emergency Contact", html=html)


def location_shared_email(
    user_email: str,
    latitude: float,
    longitude: float,
    accuracy: float | None,
    at: datetime,
) -> RenderedEmail:
    html = _LOCATION_SHARED_HTML.format(
        user=escape(user_email),
        latitude=latitude,
        longitude=longitude,
        accuracy=f"{accuracy:.2f} meters" if accuracy is not None else "Unknown",
        time=_fmt_time(at),
        map_button=_MAP_BUTTON.format(url=map_url(latitude, longitude), color="#28a745"),
    )
    return RenderedEmail(subject="Location Shared", html=html)


def location_denied_email(user_email: str, at: datetime) -> RenderedEmail:
    html = _LOCATION_DENIED_HTML.format(user=escape(user_email), time=_fmt_time(at))
    return RenderedEmail(subject="Location Request Denied", html=html)


# ---------------------------------------------------------------------------
# Broadcast alerts
# ---------------------------------------------------------------------------


def _render_sos(recipient: str, payload: dict[str, Any]) -> tuple[str, RenderedEmail]:
    user = payload["userEmail"]
    email = sos_email(user, payload["latitude"], payload["longitude"], payload["timestamp"])
    return f"EMERGENCY SOS from {user}", email


def _render_auto_sos(recipient: str, payload: dict[str, Any]) -> tuple[str, RenderedEmail]:
    user = payload["userEmail"]
    email = auto_sos_email(
        user,
        payload["originalRequester"],
        recipient,
        payload["requestedAt"],
        payload["expiredAt"],
        payload["triggeredAt"],
    )
    return f"AUTO SOS: {user} did not respond to location request within 30 minutes", email


_ALERT_RENDERERS: Final[dict[NotificationType, Callable[[str, dict[str, Any]], tuple[str, RenderedEmail]]]] = {
    NotificationType.SOS: _render_sos,
    NotificationType.AUTO_SOS: _render_auto_sos,
}


def render_alert(
    alert_type: NotificationType, recipient: str, payload: dict[str, Any]
) -> tuple[str, RenderedEmail]:
    """Return the in-app message and the email for one broadcast recipient."""
    try:
        renderer = _ALERT_RENDERERS[alert_type]
    except KeyError:
        raise ValueError(f"{alert_type} is not a broadcast alert type") from None
    return renderer(recipient, payload)
