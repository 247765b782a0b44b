"""
Expéditeurs d'emails transactionnels.
- ResendEmailSender: envoi réel via l'API Resend.
- LoggingEmailSender: pas de clé API -> l'email est seulement journalisé (dev/tests).
Les deux exposent send(to, subject, html) -> identifiant de message.
"""
import logging
from typing import Optional

import resend

from marketplace.config import EMAIL_FROM, RESEND_API_KEY
from marketplace.errors import NotificationError

logger = logging.getLogger(__name__)

# module marketplace.notifications.sender
class ResendEmailSender:
    def __init__(self, api_key: str, from_email: str = EMAIL_FROM):
        self.api_key = api_key
        self.from_email = from_email

    def send(self, to: str, subject: str, html: str) -> Optional[str]:
        """
        Envoie un email via Resend.
        - Toute erreur SDK/API devient NotificationError (enregistrée sur la ligne d'outbox).
        """
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to],
                "subject": subject,
                "html": html,
            })
        except Exception as e:
            raise NotificationError(f"Envoi Resend échoué vers {to}: {e}")
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("notifications.sender.resend sent to=%s subject=%s id=%s", to, subject, message_id)
        return message_id


class LoggingEmailSender:
    def __init__(self, from_email: str = EMAIL_FROM):
        self.from_email = from_email

    def send(self, to: str, subject: str, html: str) -> Optional[str]:
        logger.info("notifications.sender.log (RESEND_API_KEY absent) to=%s subject=%s chars=%s", to, subject, len(html or ""))
        return None


def build_sender():
    if RESEND_API_KEY:
        return ResendEmailSender(RESEND_API_KEY)
    logger.warning("RESEND_API_KEY manquant: les emails sont seulement journalisés")
    return LoggingEmailSender()
