#!/usr/bin/env python3
"""Watch the visit counter stream of a running backend while registering a visit."""
import json
import threading
import time
import uuid

import requests

BASE_URL = "http://localhost:8010"


def watch_visits(seconds: float = 10.0):
    session_id = uuid.uuid4().hex
    print("Testing /visits/stream...")
    print(f"Session: {session_id}\n")

    response = requests.get(
        f"{BASE_URL}/visits/stream",
        stream=True,
        headers={"Accept": "text/event-stream", "X-Session-Id": session_id},
        timeout=(5, seconds + 5),
    )

    if response.status_code != 200:
        print(f"Error: HTTP {response.status_code}")
        print(response.text)
        return

    def visit_later():
        time.sleep(1.0)
        resp = requests.post(f"{BASE_URL}/visits", headers={"X-Session-Id": session_id}, timeout=10)
        print(f"POST /visits -> {resp.status_code} {resp.text}")

    threading.Thread(target=visit_later, daemon=True).start()

    print("Stream started. Receiving events...\n")
    events = []
    deadline = time.time() + seconds
    try:
        for line in response.iter_lines():
            if time.time() > deadline:
                break
            if not line:
                continue
            line_str = line.decode("utf-8")
            if not line_str.startswith("data: "):
                continue
            try:
                stats = json.loads(line_str[6:])
            except json.JSONDecodeError as e:
                print(f"JSON decode error: {e}")
                continue
            events.append(stats)
            print(f"today={stats.get('today')} total={stats.get('total')}")
            if len(events) >= 2:
                break
    finally:
        response.close()

    print("\n=== Summary ===")
    print(f"Events received: {len(events)}")
    if len(events) >= 2 and events[-1]["total"] > events[0]["total"]:
        print("PASSED: counter update arrived over the stream")
    elif events:
        print("PARTIAL: initial stats only, no update seen")
    else:
        print("FAILED: no events received")


if __name__ == "__main__":
    watch_visits()
