import sys
import time
import uuid

import httpx

URL = "http://localhost:5000/events/publish"

def main():
    # the id printed by subscriber_example.py; publishing requires a live stream
    client_id = sys.argv[1]
    msg = {
        "clientId": client_id,
        "id": uuid.uuid4().hex[:5],
        "ts": int(time.time()),
        "payload": '{"order_id": "ORD-1", "amount": 9.99, "currency": "USD"}',
    }
    print("Client Message: ", msg)
    resp = httpx.post(URL, json=msg, cookies={"clientId": client_id})
    print("Server:", resp.status_code)

if __name__ == "__main__":
    main()
