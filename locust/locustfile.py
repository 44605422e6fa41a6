"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags boundary   # Buyers racing for the last seats
  locust -f locustfile.py --tags checkin    # Double-scan at the gate
  locust -f locustfile.py --tags throughput # Listing cache
  locust -f locustfile.py --tags edge       # Bad input
  locust -f locustfile.py                   # All tests

After a boundary run, the availability endpoint must report reserved <= capacity:
  GET /api/v1/events/{id}/availability
"""

import random
import string
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

PASSWORD = "loadtest123"
BOUNDARY_SEATS = 10
VIP_SEATS = 5

# Shared state
EVENT_IDS = []
BOUNDARY = {"flat": None, "categorized": None, "organizer_headers": None}
ISSUED_PAYLOADS = []


def random_email():
    return f"load_{random.randint(100000, 999999)}@example.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=10))


def future(days=30):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def sign_up(client, role="attendee"):
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD,
        "role": role,
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: boundary events are created by the first user ({BOUNDARY_SEATS} flat seats, "
          f"{VIP_SEATS} VIP seats)")
    print("=" * 60)


def ensure_boundary_events(client):
    if BOUNDARY["flat"]:
        return
    headers = sign_up(client, role="organizer")
    if not headers:
        return
    BOUNDARY["organizer_headers"] = headers

    flat = client.post("/api/v1/events/", json={
        "title": "Boundary Test Event",
        "date": future(),
        "location": "Test",
        "price": "20.00",
        "seat_count": BOUNDARY_SEATS,
    }, headers=headers)
    tiered = client.post("/api/v1/events/", json={
        "title": "Boundary Test Festival",
        "date": future(),
        "ticket_categories": [
            {"name": "VIP", "price": "120.00", "total_seats": VIP_SEATS},
            {"name": "General", "price": "40.00", "total_seats": BOUNDARY_SEATS},
        ],
    }, headers=headers)
    if flat.status_code == 201 and tiered.status_code == 201:
        BOUNDARY["flat"] = flat.json()["id"]
        BOUNDARY["categorized"] = tiered.json()["id"]
        print(f"\nCreated boundary events {BOUNDARY['flat']} and {BOUNDARY['categorized']}\n")


class BoundaryUser(HttpUser):
    """
    Many buyers, few seats. Every buyer is a fresh account, so only capacity
    limits who gets in.

    Run: locust -f locustfile.py --tags boundary -u 100 -r 50 --run-time 30s
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = sign_up(self.client)
        ensure_boundary_events(self.client)

    @tag("boundary")
    @task(2)
    def book_flat(self):
        if not BOUNDARY["flat"] or not self.headers:
            return
        with self.client.post("/api/v1/bookings/",
            json={"event_id": BOUNDARY["flat"], "quantity": 1},
            headers=self.headers,
            name="/api/v1/bookings/ [flat]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                ISSUED_PAYLOADS.append((BOUNDARY["flat"], resp.json()["proof_payload"]))
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Sold out or already booked
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("boundary")
    @task(1)
    def book_vip(self):
        if not BOUNDARY["categorized"] or not self.headers:
            return
        with self.client.post("/api/v1/bookings/",
            json={"event_id": BOUNDARY["categorized"], "items": [{"category_name": "VIP", "quantity": 1}]},
            headers=self.headers,
            name="/api/v1/bookings/ [categorized]",
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("boundary")
    @task(1)
    def check_availability(self):
        if not BOUNDARY["flat"]:
            return
        with self.client.get(f"/api/v1/events/{BOUNDARY['flat']}/availability",
            name="/api/v1/events/{id}/availability",
            catch_response=True
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Unexpected: {resp.status_code}")
            elif resp.json()["total_reserved"] > BOUNDARY_SEATS:
                resp.failure("Overbooked")
            else:
                resp.success()


class GateUser(HttpUser):
    """
    Several scanners hitting the same tickets. Each ticket must be admitted
    once; every other scan gets 409.

    Run together with BoundaryUser so there are tickets to scan.
    """
    wait_time = between(0, 0.2)

    @tag("checkin")
    @task
    def scan(self):
        headers = BOUNDARY["organizer_headers"]
        if not ISSUED_PAYLOADS or not headers:
            return
        event_id, payload = random.choice(ISSUED_PAYLOADS)
        with self.client.post("/api/v1/bookings/verify",
            json={"payload": payload, "event_id": event_id},
            headers=headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (200, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    Cache effectiveness on the event listing.

    Run twice, with and without Redis, and compare P95/P99:
      locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_events_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/events/?page={page}&page_size=20",
            name="/api/v1/events/ [cached]")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @tag("throughput", "read")
    @task(3)
    def get_availability(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}/availability",
                name="/api/v1/events/{id}/availability")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    Bad input must produce proper error codes, never a 500.

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = sign_up(self.client)

    def expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_event_id(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": 999999, "quantity": 1},
            headers=self.headers, catch_response=True) as resp:
            self.expect(resp, [404])

    @tag("edge")
    @task
    def quantity_out_of_range(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": 1, "quantity": random.choice([-5, 0, 11, 999999])},
            headers=self.headers, catch_response=True) as resp:
            self.expect(resp, [400, 404])

    @tag("edge")
    @task
    def both_variants(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": 1, "quantity": 1, "items": [{"category_name": "VIP", "quantity": 1}]},
            headers=self.headers, catch_response=True) as resp:
            self.expect(resp, [422])

    @tag("edge")
    @task
    def malformed_scan(self):
        with self.client.post("/api/v1/bookings/verify",
            json={"payload": "not a ticket", "event_id": 1},
            headers=self.headers, catch_response=True) as resp:
            self.expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers, catch_response=True) as resp:
            self.expect(resp, [422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": 1, "quantity": 1}, catch_response=True) as resp:
            self.expect(resp, [401])
