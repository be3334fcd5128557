from .schemas import InitEnvelope, Message
