"""
Follow-up Configuration - types, delays and statuses
"""

from datetime import timedelta


class FollowUpType:
    PRE_DEMO_REMINDER = 'pre_demo_reminder'
    PRE_DEMO_24H = 'pre_demo_24h'
    POST_DEMO = 'post_demo'
    COLD_LEAD_REENGAGEMENT = 'cold_lead_reengagement'
    NO_SHOW_FOLLOWUP = 'no_show_followup'
    PROPOSAL_REMINDER = 'proposal_reminder'
    SAID_LATER = 'said_later'
    REENGAGEMENT_2 = 'reengagement_2'
    REENGAGEMENT_3 = 'reengagement_3'


class FollowUpStatus:
    PENDING = 'pending'
    SENT = 'sent'
    CANCELLED = 'cancelled'
    FAILED = 'failed'
    OPTED_OUT = 'opted_out'


class FollowUpConfig:
    """Delays and groupings for follow-up types"""

    DELAYS = {
        FollowUpType.PRE_DEMO_REMINDER: timedelta(minutes=30),
        FollowUpType.PRE_DEMO_24H: timedelta(hours=24),
        FollowUpType.POST_DEMO: timedelta(minutes=5),
        FollowUpType.COLD_LEAD_REENGAGEMENT: timedelta(hours=48),
        FollowUpType.NO_SHOW_FOLLOWUP: timedelta(minutes=15),
        FollowUpType.PROPOSAL_REMINDER: timedelta(hours=24),
        FollowUpType.SAID_LATER: timedelta(hours=24),
        FollowUpType.REENGAGEMENT_2: timedelta(days=5),
        FollowUpType.REENGAGEMENT_3: timedelta(days=14),
    }

    # Minimum gap between two follow-ups to the same lead
    MIN_INTERVAL = timedelta(hours=24)

    # Attempt number -> type
    REENGAGEMENT_SEQUENCE = {
        1: FollowUpType.COLD_LEAD_REENGAGEMENT,
        2: FollowUpType.REENGAGEMENT_2,
        3: FollowUpType.REENGAGEMENT_3,
    }
    MAX_REENGAGEMENT_ATTEMPTS = 3

    REENGAGEMENT_TYPES = (
        FollowUpType.COLD_LEAD_REENGAGEMENT,
        FollowUpType.REENGAGEMENT_2,
        FollowUpType.REENGAGEMENT_3,
    )

    # Sent regardless of the minimum interval
    DEMO_REMINDER_TYPES = (
        FollowUpType.PRE_DEMO_REMINDER,
        FollowUpType.PRE_DEMO_24H,
        FollowUpType.POST_DEMO,
        FollowUpType.NO_SHOW_FOLLOWUP,
    )

    # Lead stages that stop re-engagement
    DEMO_STAGES = ('demo_scheduled', 'demo_completed')

    @classmethod
    def get_delay(cls, followup_type: str) -> timedelta:
        return cls.DELAYS.get(followup_type, cls.DELAYS[FollowUpType.COLD_LEAD_REENGAGEMENT])

    @classmethod
    def is_reengagement(cls, followup_type: str) -> bool:
        return followup_type in cls.REENGAGEMENT_TYPES

    @classmethod
    def is_demo_reminder(cls, followup_type: str) -> bool:
        return followup_type in cls.DEMO_REMINDER_TYPES
