import random
from typing import Optional, Tuple

from fastapi import Request, Response

from .constants import CLIENT_ID_ALPHABET, CLIENT_ID_COOKIE, CLIENT_ID_LENGTH


class IdGenerator:
    '''Random opaque client ids.

    One instance is created at startup and handed to the app, so tests can
    swap in a seeded generator. Ids are not checked for uniqueness; with the
    default 36**7 space collisions are unlikely but possible.
    '''

    def __init__(self, length: int = CLIENT_ID_LENGTH,
                 alphabet: str = CLIENT_ID_ALPHABET,
                 seed: Optional[int] = None):
        if length <= 0:
            raise ValueError("length must be positive")
        if not alphabet:
            raise ValueError("alphabet must not be empty")
        self.length = length
        self.alphabet = alphabet
        self._rng = random.Random(seed)

    def new_id(self) -> str:
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.length))


def get_client_id(request: Request, cookie_name: str = CLIENT_ID_COOKIE) -> Optional[str]:
    return request.cookies.get(cookie_name) or None


def ensure_client_id(request: Request, generator: IdGenerator,
                     cookie_name: str = CLIENT_ID_COOKIE) -> Tuple[str, bool]:
    """Return the request's client id, minting one if absent. The flag is True for a new id."""
    client_id = get_client_id(request, cookie_name)
    if client_id is not None:
        return client_id, False
    return generator.new_id(), True


def set_client_cookie(response: Response, client_id: str, cookie_name: str = CLIENT_ID_COOKIE):
    response.set_cookie(key=cookie_name, value=client_id)
