"""
Domain errors
"""


class LoomiError(Exception):
    """Base class for application errors"""


class EncryptionError(LoomiError):
    """Encryption key missing/invalid or ciphertext could not be decrypted"""


class TenantNotFoundError(LoomiError):
    pass


class WhatsAppSendError(LoomiError):
    """Graph API rejected a message"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TwilioNotConfiguredError(LoomiError):
    pass


class TwilioProvisioningError(LoomiError):
    pass


class LLMError(LoomiError):
    """Language model request failed"""


class BroadcastError(LoomiError):
    """Campaign input could not be used (no recipients, bad components)"""


class BroadcastStateError(BroadcastError):
    """Campaign is already sending or completed"""
