"""
Webhook Security - Verify webhook signatures
"""

import hmac
import hashlib

from fastapi import Request, HTTPException
from twilio.request_validator import RequestValidator

from config.environments import current_config
from utils.logger import get_logger

log = get_logger("webhook_security")


class WebhookSecurity:
    def __init__(self, twilio_auth_token: str = None, meta_app_secret: str = None):
        self.twilio_auth_token = twilio_auth_token if twilio_auth_token is not None else current_config.TWILIO_AUTH_TOKEN
        self.validator = RequestValidator(self.twilio_auth_token) if self.twilio_auth_token else None
        self.meta_app_secret = meta_app_secret if meta_app_secret is not None else current_config.WHATSAPP_APP_SECRET

    async def verify_twilio_signature(self, request: Request) -> bool:
        """
        Verify Twilio webhook signature

        Args:
            request: FastAPI request object

        Returns:
            True if signature is valid (or verification is not configured)

        Raises:
            HTTPException if signature is missing or invalid
        """
        if not self.validator:
            log.debug("Twilio auth token not configured, skipping signature verification")
            return True

        signature = request.headers.get('X-Twilio-Signature', '')

        if not signature:
            log.warning("No Twilio signature found in headers")
            raise HTTPException(status_code=403, detail="Missing signature")

        form_data = await request.form()
        params = dict(form_data)

        if not self.validator.validate(str(request.url), params, signature):
            log.warning("Invalid Twilio signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

        return True

    def verify_custom_signature(self, payload: bytes, signature: str, secret: str) -> bool:
        """
        Verify an HMAC-SHA256 hex signature

        Args:
            payload: Raw request body
            signature: Hex digest from header
            secret: Shared secret

        Returns:
            True if signature is valid
        """
        expected_signature = hmac.new(
            secret.encode('utf-8'),
            payload,
            hashlib.sha256
        ).hexdigest()

        return hmac.compare_digest(signature, expected_signature)

    async def verify_meta_signature(self, request: Request) -> bool:
        """Check X-Hub-Signature-256 on WhatsApp Cloud API deliveries"""
        if not self.meta_app_secret:
            return True

        header = request.headers.get('X-Hub-Signature-256', '')
        if not header.startswith('sha256='):
            raise HTTPException(status_code=403, detail="Missing signature")

        body = await request.body()
        if not self.verify_custom_signature(body, header[len('sha256='):], self.meta_app_secret):
            log.warning("Invalid Meta webhook signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

        return True


# Singleton instance
webhook_security = WebhookSecurity()
