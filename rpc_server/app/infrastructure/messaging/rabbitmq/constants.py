"""RabbitMQ channel lifecycle states."""
from enum import Enum


class ChannelState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CHANNEL_OPEN = "CHANNEL_OPEN"
    TOPOLOGY_DECLARED = "TOPOLOGY_DECLARED"
    CONSUMING = "CONSUMING"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
