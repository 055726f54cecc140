"""
Verification email rendering.

Delivery is pluggable: the mailer renders the message with Jinja2 and hands
it to a transport coroutine. The default transport only logs the message.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = structlog.get_logger(__name__)

TEMPLATES_PATH = Path(__file__).parent / "templates"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


Transport = Callable[[EmailMessage], Awaitable[None]]


async def log_transport(message: EmailMessage) -> None:
    """Record the message instead of sending it."""
    logger.info("email_queued", to=message.to, subject=message.subject)


class Mailer:
    """Renders and dispatches account emails."""

    def __init__(
        self,
        config: Any,
        transport: Optional[Transport] = None,
        templates_path: Path = TEMPLATES_PATH,
    ) -> None:
        self.config = config
        self.transport = transport or log_transport

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(templates_path)),
            autoescape=select_autoescape(["html"]),
            auto_reload=False,
            cache_size=50,
        )

    def verification_url(self, token: str) -> str:
        base_url = str(self.config.get("server", "base_url")).rstrip("/")
        return f"{base_url}/verify-email/{token}"

    async def send_verification_email(
        self,
        email: str,
        username: str,
        token: str,
    ) -> EmailMessage:
        """
        Render the verification email and pass it to the transport.

        @param email: Recipient address
        @param username: Recipient display name
        @param token: Email verification token
        @return: The message that was handed to the transport
        """
        context = {
            "ctf_name": self.config.get("ctf_name"),
            "username": username,
            "verification_url": self.verification_url(token),
        }

        message = EmailMessage(
            to=email,
            subject=f"Verify your email - {context['ctf_name']}",
            html=self.jinja_env.get_template("verification_email.html").render(**context),
            text=self.jinja_env.get_template("verification_email.txt").render(**context),
        )
        await self.transport(message)
        return message
