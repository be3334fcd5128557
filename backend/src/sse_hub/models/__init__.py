from .models import Broker, HistoryRing, Subscriber, serialize_message
