from .constants import (
    CLIENT_ID_ALPHABET,
    CLIENT_ID_COOKIE,
    CLIENT_ID_LENGTH,
    HEARTBEAT_INTERVAL,
    HISTORY_SIZE,
    SUBSCRIBER_QUEUE_SIZE,
)
from .utility_functions import (
    make_comment,
    make_frame,
    make_init,
    make_published,
)
from .identity import IdGenerator, ensure_client_id, get_client_id, set_client_cookie
