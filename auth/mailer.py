"""
auth/mailer.py -- Delivery of activation tokens to newly registered users (AWS SES).

Registration and the activation-token resend endpoint schedule
Mailer.send_activation() as a FastAPI background task, so SES latency never
holds the HTTP response. Delivery errors are logged and dropped: the user can
always request a fresh activation token.

Setup:
  MAIL_SENDER=Marquee <no-reply@yourdomain.com>   (a verified SES identity)
  SES_REGION=us-east-1
  AWS credentials come from the usual boto3 chain (env, profile, role).

With no sender configured (local development) the mailer logs that delivery
is disabled. It never logs the token itself.

Layer rule: no imports from api/ or movies/.
"""

from __future__ import annotations

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from auth.models import Token, User

logger = logging.getLogger("marquee.mail")

_ACTIVATION_SUBJECT = "Welcome to Marquee!"

_ACTIVATION_BODY = """Hi {name},

Thanks for signing up for a Marquee account.

To activate your account, send a PUT request to /v1/users/activated with
the following JSON body:

    {{"token": "{token}"}}

This token is single-use and expires at {expiry}.
"""


class Mailer:
    """Send account mail via AWS SES."""

    def __init__(self, sender: str = "", region: str = "us-east-1") -> None:
        self.sender = sender
        self.region = region
        self._client = None

    @property
    def client(self):
        """Lazy-load the SES client."""
        if self._client is None:
            self._client = boto3.client("ses", region_name=self.region)
        return self._client

    def is_configured(self) -> bool:
        return bool(self.sender)

    def send_activation(self, user: User, token: Token) -> None:
        if not self.is_configured():
            logger.info("Mail not configured; activation mail for user %s not sent", user.id)
            return

        body = _ACTIVATION_BODY.format(name=user.name, token=token.plaintext, expiry=token.expiry.isoformat())
        try:
            response = self.client.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [user.email]},
                Message={
                    "Subject": {"Data": _ACTIVATION_SUBJECT, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except (ClientError, BotoCoreError):
            logger.exception("Failed to send activation mail for user %s", user.id)
            return
        logger.info("Activation mail sent for user %s (MessageId: %s)", user.id, response.get("MessageId"))
