"""Remote backends and push channels consumed by TableSync."""

from .base import (
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    ChannelSpec,
    Prefilter,
    PushChannel,
    RemoteBackend,
    ScopedQuery,
    Subscription,
    is_success,
)
from .memory import MockBackend
from .mqtt_channel import MQTTChangeChannel
from .rest import RestBackend

__all__ = [
    "ChangeEvent",
    "ChangeHandler",
    "ChangeKind",
    "ChannelSpec",
    "Prefilter",
    "PushChannel",
    "RemoteBackend",
    "ScopedQuery",
    "Subscription",
    "is_success",
    "MockBackend",
    "MQTTChangeChannel",
    "RestBackend",
]
