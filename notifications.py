import logging
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import credentials, messaging

from budgeting import AlertMessage
from config import Settings


logger = logging.getLogger(__name__)


class PushSender(Protocol):
    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> None: ...


class FirebasePushSender:
    """Delivers messages through Firebase Cloud Messaging."""

    APP_NAME = "budgetwatch"

    def __init__(self, credentials_path: str, timeout: float) -> None:
        try:
            self.app = firebase_admin.get_app(self.APP_NAME)
        except ValueError:
            self.app = firebase_admin.initialize_app(
                credentials.Certificate(credentials_path),
                options={"httpTimeout": timeout},
                name=self.APP_NAME,
            )

    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> None:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=data,
        )
        messaging.send(message, app=self.app)


class LoggingPushSender:
    """Stand-in used when no Firebase credentials are configured."""

    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> None:
        logger.info(
            f"push_skipped: no_credentials title={title!r} type={data.get('type')}"
        )


def build_push_sender(settings: Settings) -> PushSender:
    if settings.firebase_credentials:
        return FirebasePushSender(
            settings.firebase_credentials, timeout=settings.push_timeout_secs
        )
    return LoggingPushSender()


def dispatch(
    sender: PushSender, user_id: str, token: Optional[str], message: AlertMessage
) -> bool:
    """Send ``message`` if the user registered a device; returns whether it was sent."""
    if not token:
        logger.debug(f"push_no_token: user={user_id} type={message.data.get('type')}")
        return False
    sender.send(token, message.title, message.body, dict(message.data))
    logger.info(f"push_sent: user={user_id} type={message.data.get('type')}")
    return True
