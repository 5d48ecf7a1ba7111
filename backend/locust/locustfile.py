"""
Locust Load Test Suite

The target show must already exist (catalog management creates shows).
Tokens are minted locally with the service's SECRET_KEY, standing in for the
identity provider.

Run scenarios:
  SHOW_ID=1 TOTAL_SEATS=100 locust -f locustfile.py --tags contention  # Same seats, many users
  SHOW_ID=1 locust -f locustfile.py --tags seatmap                     # Read path
  locust -f locustfile.py --tags edge                                   # Bad input
  locust -f locustfile.py                                               # All tests

After a contention run, verify no seat was sold twice:
  GET /api/v1/shows/{SHOW_ID}/bookings  -> every seat appears at most once
"""

import os
import random
import uuid

import jwt
from locust import HttpUser, task, between, tag

SHOW_ID = int(os.environ.get("SHOW_ID", "1"))
TOTAL_SEATS = int(os.environ.get("TOTAL_SEATS", "100"))
SECRET_KEY = os.environ.get("SECRET_KEY", "super-secret-key-change-in-production")


def auth_headers() -> dict:
    token = jwt.encode({"sub": f"load-{uuid.uuid4().hex[:12]}"}, SECRET_KEY, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - everyone fights over the same small block of seats.

    Run: locust -f locustfile.py --tags contention -u 200 -r 50 --run-time 30s

    Expected: 201 until the block is gone, then only 409s naming taken seats.
    Anything else (especially 5xx) is a failure.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers()

    @tag("contention")
    @task
    def book_hot_seats(self):
        seats = random.sample(range(1, min(TOTAL_SEATS, 20) + 1), random.randint(1, 3))
        with self.client.post(
            "/api/v1/bookings/",
            json={"show_id": SHOW_ID, "seats": seats, "payment_reference": f"pay_{uuid.uuid4().hex}"},
            headers=self.headers,
            name="/api/v1/bookings/ [contention]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409 and resp.json().get("unavailable_seats"):
                resp.success()  # Expected: lost the race, told which seats
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class SeatMapUser(HttpUser):
    """
    TEST 2: Read path - seat maps are read live from the ledger.

    Run: locust -f locustfile.py --tags seatmap -u 100 -r 20 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    @tag("seatmap")
    @task(3)
    def seat_map(self):
        self.client.get(f"/api/v1/shows/{SHOW_ID}/seats", name="/api/v1/shows/[id]/seats")

    @tag("seatmap")
    @task(1)
    def show_details(self):
        self.client.get(f"/api/v1/shows/{SHOW_ID}", name="/api/v1/shows/[id]")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Bad input must be rejected cheaply, before touching the ledger.

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s
    """
    wait_time = between(0.1, 0.3)

    def on_start(self):
        self.headers = auth_headers()

    def _expect(self, payload: dict, expected: set, name: str):
        with self.client.post(
            "/api/v1/bookings/", json=payload, headers=self.headers, name=name, catch_response=True
        ) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {sorted(expected)}, got {resp.status_code}")

    @tag("edge")
    @task
    def out_of_range_seat(self):
        self._expect(
            {"show_id": SHOW_ID, "seats": [TOTAL_SEATS + 1], "payment_reference": "pay"},
            {400},
            "edge: out of range",
        )

    @tag("edge")
    @task
    def duplicate_seats(self):
        self._expect(
            {"show_id": SHOW_ID, "seats": [1, 1], "payment_reference": "pay"},
            {400},
            "edge: duplicate seats",
        )

    @tag("edge")
    @task
    def unknown_show(self):
        self._expect(
            {"show_id": 987654321, "seats": [1], "payment_reference": "pay"},
            {404},
            "edge: unknown show",
        )

    @tag("edge")
    @task
    def missing_payment(self):
        self._expect({"show_id": SHOW_ID, "seats": [1]}, {422}, "edge: no payment reference")
