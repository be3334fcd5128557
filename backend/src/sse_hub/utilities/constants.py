# ------------ Config ------------
HISTORY_SIZE = 10             # last N messages kept for newly connected clients
SUBSCRIBER_QUEUE_SIZE = 50    # bounded per-subscriber queue
HEARTBEAT_INTERVAL = 15       # seconds of idle stream before a keep-alive comment
CLIENT_ID_COOKIE = "clientId"
CLIENT_ID_LENGTH = 7
CLIENT_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
# --------------------------------
