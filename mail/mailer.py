"""
mail/mailer.py -- Delivery collaborator for verification emails.

The auth workflow depends on the Mailer protocol, not on a concrete
provider, so tests inject a capturing fake and local development logs
messages instead of sending them.

HttpMailer posts a JSON message to a transactional-mail HTTP API:

    POST <MAIL_API_URL>
    Authorization: Bearer <MAIL_API_TOKEN>
    {"from": {"address", "name"}, "to": [{"address"}], "subject", "text"}

Any transport error or non-2xx status raises DeliveryError. There are no
retries here; the caller sees the failure and may invite again.

Layer rule: imports only core/ and third-party libraries.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from core.config import Settings
from core.errors import DeliveryError

logger = logging.getLogger("gatehouse.mail")

_TIMEOUT = 10


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class HttpMailer:
    def __init__(
        self,
        api_url: str,
        api_token: str,
        from_address: str,
        from_name: str = "Gatehouse",
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url
        self.from_address = from_address
        self.from_name = from_name
        self._session = session or requests.Session()
        # max_redirects=3 replaces the requests default of 30; the mail API is one known endpoint.
        self._session.max_redirects = 3
        if api_token:
            self._session.headers["Authorization"] = f"Bearer {api_token}"

    def send(self, to: str, subject: str, body: str) -> None:
        payload = {
            "from": {"address": self.from_address, "name": self.from_name},
            "to": [{"address": to}],
            "subject": subject,
            "text": body,
        }
        try:
            resp = self._session.post(self.api_url, json=payload, timeout=_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Mail delivery failed: %s", e)
            raise DeliveryError(detail=str(e)) from e
        logger.info("Mail delivered (%s)", subject)

    def close(self) -> None:
        self._session.close()


class LogMailer:
    """Writes messages to the log instead of sending them (MAIL_API_URL unset)."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.warning("MAIL_API_URL not set; not sending %r to %s:\n%s", subject, to, body)

    def close(self) -> None:
        pass


def create_mailer(settings: Settings) -> Mailer:
    if settings.mail_api_url:
        return HttpMailer(
            settings.mail_api_url,
            settings.mail_api_token,
            settings.mail_from_address,
            settings.mail_from_name,
        )
    return LogMailer()
