"""
Worker Configuration - Settings for background workers
"""

import os


class WorkerConfig:
    """Configuration for background workers"""

    # Follow-up Worker
    FOLLOWUP_CHECK_INTERVAL = int(os.getenv('FOLLOWUP_CHECK_INTERVAL', '300'))  # seconds
    FOLLOWUP_WINDOW_MINUTES = int(os.getenv('FOLLOWUP_WINDOW_MINUTES', '5'))
    FOLLOWUP_BATCH_SIZE = int(os.getenv('FOLLOWUP_BATCH_SIZE', '50'))

    @classmethod
    def validate(cls) -> list:
        """Return a list of configuration problems (empty when valid)"""
        errors = []

        if cls.FOLLOWUP_CHECK_INTERVAL < 1:
            errors.append("FOLLOWUP_CHECK_INTERVAL must be at least 1 second")

        if cls.FOLLOWUP_WINDOW_MINUTES < 0:
            errors.append("FOLLOWUP_WINDOW_MINUTES cannot be negative")

        if cls.FOLLOWUP_BATCH_SIZE < 1:
            errors.append("FOLLOWUP_BATCH_SIZE must be positive")

        return errors
