class BrokerError(Exception):
    '''Base class for broker registry and publish failures.'''


class AlreadySubscribed(BrokerError):
    def __init__(self, client_id: str):
        super().__init__(f"client {client_id} already subscribed")
        self.client_id = client_id


class NotSubscribed(BrokerError):
    def __init__(self, client_id: str):
        super().__init__(f"client {client_id} not subscribed")
        self.client_id = client_id


class SerializationFailure(BrokerError):
    pass
