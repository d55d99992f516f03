# app/core/links.py
# Links firmados (HMAC) para que el paciente confirme/cancele sin login.
import hashlib
import hmac
import time
from datetime import datetime
from typing import Literal
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

from app.core.config import settings

LinkAction = Literal["confirm", "cancel"]


def _digest(appointment_id: str, action: str, expires: int) -> str:
    payload = f"{appointment_id}:{action}:{expires}".encode()
    return hmac.new(settings.link_secret.encode(), payload, hashlib.sha256).hexdigest()


def sign_link(appointment_id: str, action: LinkAction, scheduled_at: datetime,
              tz_name: str | None = None) -> tuple[int, str]:
    # scheduled_at es hora local de la clínica; vence LINK_EXPIRY_HOURS después del turno
    tz = ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)
    expires = int(scheduled_at.replace(tzinfo=tz).timestamp()) + settings.LINK_EXPIRY_HOURS * 3600
    return expires, _digest(appointment_id, action, expires)


def verify_link(appointment_id: str, action: LinkAction, expires: int, sig: str,
                now_ts: float | None = None) -> str | None:
    """Devuelve None si el link es válido, o el motivo del rechazo."""
    now_ts = time.time() if now_ts is None else now_ts
    if now_ts > expires:
        return "Este link expiró. Contactá a la clínica para recibir uno nuevo."
    if not hmac.compare_digest(_digest(appointment_id, action, expires), sig or ""):
        return "Link inválido"
    return None


def build_action_url(appointment_id: str, action: LinkAction, scheduled_at: datetime,
                     tz_name: str | None = None) -> str:
    expires, sig = sign_link(appointment_id, action, scheduled_at, tz_name)
    query = urlencode({"id": appointment_id, "expires": expires, "sig": sig})
    return f"{settings.APP_BASE_URL.rstrip('/')}/{action}?{query}"
