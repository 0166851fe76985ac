#!/usr/bin/env python
"""
Smoke test against a running Ara Voice server.

Usage:
    python smoke_client.py [backend_url]

Reads BEARER_TOKEN and SECRET_PHRASE from the environment.
"""
import os
import sys
import time

import requests

BACKEND_URL = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
SESSION_ID = "smoke_session_001"


def headers():
    token = os.getenv("BEARER_TOKEN", "")
    return {"Authorization": f"Bearer {token}"} if token else {}


def test_health():
    """Test health endpoint."""
    print("=== Testing Health Endpoint ===")
    response = requests.get(f"{BACKEND_URL}/health", timeout=30)
    print(f"Status: {response.status_code}")
    data = response.json()
    print(f"Status: {data['status']}")
    print(f"Startup: {data['startup_validation']}")
    print(f"Backend: {data['live_check']['backend']}")
    print()


def test_commands():
    """Send a few commands through each command endpoint."""
    print("=== Testing Command Endpoints ===")
    phrase = os.getenv("SECRET_PHRASE", "people purple dance keyboard pig")

    requests_to_send = [
        ("/webhook/voice", {"command": f"{phrase} groceries apples 2 at 1.50 paid", "sessionId": SESSION_ID}),
        ("/process-command", {"transcript": f"{phrase} groceries milk 1 at 3 pending", "sessionId": SESSION_ID}),
        ("/voice-command", {"command": "how many apples do we have?", "sessionId": SESSION_ID}),
    ]

    for path, payload in requests_to_send:
        print(f"\nPOST {path}")
        print("-" * 50)

        start_time = time.time()
        response = requests.post(f"{BACKEND_URL}{path}", json=payload, headers=headers(), timeout=60)
        duration = time.time() - start_time

        print(f"Status: {response.status_code}")
        print(f"Duration: {duration:.2f}s")
        data = response.json()
        print(f"Message: {data.get('message')}")
        if data.get("status") == "error":
            print(f"Kind: {data.get('kind')}")

    print()


def test_session():
    """Show what the server remembers about the smoke session."""
    print("=== Testing Session Endpoint ===")
    response = requests.get(f"{BACKEND_URL}/session/{SESSION_ID}", timeout=30)
    print(f"Status: {response.status_code}")
    if response.status_code == 200:
        data = response.json()
        print(f"Interactions: {len(data['history'])}")
        print(f"Preferred collection: {data['context'].get('preferred_collection')}")
    print()


if __name__ == "__main__":
    try:
        test_health()
        print("=" * 60)
        test_commands()
        print("=" * 60)
        test_session()
        print("=== All Checks Completed ===")
    except requests.RequestException as e:
        print(f"Error: {e}")
        sys.exit(1)
