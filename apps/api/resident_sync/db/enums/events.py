"""Webhook event enums."""

from enum import Enum


class EventStatus(str, Enum):
    """Lifecycle of an intake ledger entry."""

    RECEIVED = "received"
    QUEUED = "queued"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED = "ignored"


class AlisEventType(str, Enum):
    """ALIS webhook event types the pipeline understands."""

    MOVE_IN = "residents.move_in"
    MOVE_OUT = "residents.move_out"
    LEAVE_START = "residents.leave_start"
    LEAVE_END = "residents.leave_end"
    LEAVE_CANCELLED = "residents.leave_cancelled"
    BASIC_INFO_UPDATED = "residents.basic_info_updated"
    TEST_EVENT = "test.event"

    @classmethod
    def is_supported(cls, value: str) -> bool:
        return value in _SUPPORTED

    @classmethod
    def is_test(cls, value: str) -> bool:
        return value == cls.TEST_EVENT.value


_SUPPORTED = frozenset(member.value for member in AlisEventType)

DEFAULT_EVENT_STATUS = EventStatus.RECEIVED
