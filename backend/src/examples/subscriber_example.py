import json

import httpx  # to install: pip install httpx

URL = "http://localhost:5000/events/subscribe"

def main():
    with httpx.Client(timeout=None) as client:
        with client.stream("GET", URL) as resp:
            resp.raise_for_status()
            print("Awaiting messages... (press Ctrl+C to exit)")
            event = None
            try:
                for line in resp.iter_lines():
                    if line.startswith("event: "):
                        event = line[len("event: "):]
                    elif line.startswith("data: "):
                        data = json.loads(line[len("data: "):])
                        if event == "init":
                            print("Client id:", data["clientId"])
                            print("History:", data["history"])
                        else:
                            print("Received:", data)
            except KeyboardInterrupt:
                print("Disconnected.")

if __name__ == "__main__":
    main()
