from typing import Iterable

from ..schemas import InitEnvelope, Message


# Server -> client frames are built as SSE text blocks
def make_frame(event: str, data: str) -> str:
    # data lines cannot contain raw newlines; JSON output never does
    return f"event: {event}\ndata: {data}\n\n"

def make_init(client_id: str, history: Iterable[Message]) -> str:
    envelope = InitEnvelope(clientId=client_id, history=list(history))
    return make_frame("init", envelope.model_dump_json(by_alias=True))

def make_published(data: str) -> str:
    return make_frame("published", data)

def make_comment(text: str = "keep-alive") -> str:
    return f": {text}\n\n"
