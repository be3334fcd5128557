from .exceptions import AlreadySubscribed, BrokerError, NotSubscribed, SerializationFailure
from .models import Broker, HistoryRing, Subscriber
from .schemas import Message
from .streaming import SessionState, StreamSession

__version__ = "0.1.0"
