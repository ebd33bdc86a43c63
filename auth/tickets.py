"""
auth/tickets.py -- Reauthorization tickets for the restricted tier.

A ticket is a self-contained (user, password) pair the client sends back with
every restricted request, typically as a hidden form field. The restricted
tier re-runs the credential check on the pair each time, so no restricted
state lives in the session.

Encoding:
  issue: JSON ["user", "password"] -> Fernet token -> hex string
  open:  hex string -> Fernet token -> JSON -> Credentials

The pair must carry the password because verification re-runs the directory
search. Fernet (AES-128-CBC + HMAC-SHA256) keeps the password unreadable to
anyone without SECRET_KEY and makes tampered tickets fail to open. Fernet
tokens embed their issue time, which gives ticket expiry for free.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json

from cryptography.fernet import Fernet, InvalidToken

from auth.errors import InvalidTicket
from auth.models import Credentials


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class TicketCodec:
    """Issue and open tickets.

    ttl_seconds=0 disables expiry; otherwise open() rejects tickets issued
    longer ago than ttl_seconds.
    """

    def __init__(self, secret_key: str, ttl_seconds: int = 0) -> None:
        self._fernet = Fernet(_derive_fernet_key(secret_key))
        self.ttl_seconds = ttl_seconds

    def issue(self, credentials: Credentials) -> str:
        payload = json.dumps([credentials.user, credentials.password]).encode("utf-8")
        return self._fernet.encrypt(payload).hex()

    def open(self, ticket: str) -> Credentials:
        """Decode a ticket. Raises InvalidTicket on any malformed input."""
        try:
            token = binascii.unhexlify(ticket.strip())
        except (binascii.Error, ValueError) as exc:
            raise InvalidTicket("ticket is not a hex string") from exc
        try:
            if self.ttl_seconds:
                payload = self._fernet.decrypt(token, ttl=self.ttl_seconds)
            else:
                payload = self._fernet.decrypt(token)
        except InvalidToken as exc:
            raise InvalidTicket("ticket failed verification") from exc
        try:
            pair = json.loads(payload.decode("utf-8"))
        except ValueError as exc:
            raise InvalidTicket("ticket payload is not JSON") from exc
        if not (isinstance(pair, list) and len(pair) == 2 and all(isinstance(v, str) for v in pair)):
            raise InvalidTicket("ticket payload is not a (user, password) pair")
        return Credentials(user=pair[0], password=pair[1])
