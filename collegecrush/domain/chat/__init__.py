"""Chat domain exports."""

from .backend import MessageBackend, PostgresMessageBackend, RestMessageBackend
from .messenger import ReliableMessenger
from .models import DeliveryState, Message, OutboundMessage
from .realtime import ChannelSubscription, RealtimeChannelManager, SubscriptionState
from .transport import RedisStreamTransport, publish_message_event

__all__ = [
	"ChannelSubscription",
	"DeliveryState",
	"Message",
	"MessageBackend",
	"OutboundMessage",
	"PostgresMessageBackend",
	"RealtimeChannelManager",
	"RedisStreamTransport",
	"ReliableMessenger",
	"RestMessageBackend",
	"SubscriptionState",
	"publish_message_event",
]
