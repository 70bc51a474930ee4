"""Change webhook signature validation middleware."""

import hmac
import hashlib
import base64
from typing import Optional

from ..utils.config import get_config
from ..utils.logger import get_webhook_logger
from ..utils.exceptions import WebhookValidationError


class WebhookValidator:
    """Validates signatures and origin tables of database change webhooks."""

    def __init__(self):
        """Initialize webhook validator."""
        config = get_config()
        self.secret = config.env.webhook_secret
        self.header = config.webhook.signature_header
        self.validate_enabled = config.webhook.validate_signature
        self.watched_tables = {config.store.items_table, config.store.categories_table}
        self.logger = get_webhook_logger()

    def validate_signature(self, body: bytes, signature_header: Optional[str]) -> bool:
        """
        Validate the HMAC-SHA256 signature of a webhook body.

        The signature is the base64-encoded HMAC of the raw body, keyed with
        ``WEBHOOK_SECRET``.

        Args:
            body: Raw request body bytes
            signature_header: Value of the configured signature header

        Returns:
            True if signature is valid

        Raises:
            WebhookValidationError: If validation fails
        """
        if not self.validate_enabled:
            self.logger.warning("Webhook signature validation is disabled!")
            return True

        if not self.secret:
            raise WebhookValidationError("Webhook secret is not configured")

        if not signature_header:
            raise WebhookValidationError(
                "Missing webhook signature header",
                details={"header": self.header}
            )

        try:
            expected_signature = base64.b64encode(
                hmac.new(
                    self.secret.encode('utf-8'),
                    body,
                    hashlib.sha256
                ).digest()
            ).decode('utf-8')

            is_valid = hmac.compare_digest(expected_signature, signature_header)

        except Exception as e:
            raise WebhookValidationError(
                f"Signature validation error: {str(e)}",
                details={"error": str(e)}
            )

        if not is_valid:
            raise WebhookValidationError(
                "Invalid webhook signature",
                details={"received": signature_header[:10] + "..."}
            )

        self.logger.debug("Webhook signature validated successfully")
        return True

    def validate_table(self, table: Optional[str]) -> bool:
        """
        Check that a change payload refers to a table this service watches.

        Raises:
            WebhookValidationError: If the table is missing or unknown
        """
        if not table:
            raise WebhookValidationError("Missing table in webhook payload")

        if table not in self.watched_tables:
            raise WebhookValidationError(
                f"Unexpected table: {table}",
                details={"table": table}
            )

        return True
