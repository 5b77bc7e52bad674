"""Load testing script for the image pipeline using Locust."""

import random
import uuid

from locust import HttpUser, task, between
import structlog

logger = structlog.get_logger()


def _check(response):
    """A request is healthy when the HTTP contract holds, even if the item failed."""
    if response.status_code == 200 and "correlationId" in response.json():
        response.success()
    else:
        response.failure(f"HTTP {response.status_code}")


class ImagePipelineUser(HttpUser):
    """Locust user class simulating the scheduled trigger and direct callers."""

    wait_time = between(0.5, 2.0)

    def on_start(self):
        """Called when a user starts."""
        logger.info("User started load testing")

    @task(5)
    def trigger_queue(self):
        """Queue-mode poll, the most common caller."""
        payload = {"batchSize": random.randint(1, 10)}
        with self.client.post("/process-item-image", json=payload, catch_response=True) as response:
            _check(response)

    @task(1)
    def trigger_queue_with_recovery(self):
        with self.client.post("/process-item-image", json={"recoverStale": True}, catch_response=True) as response:
            _check(response)

    @task(2)
    def direct_unknown_item(self):
        """Direct mode on an unknown item exercises the per-item failure path."""
        with self.client.post(
            "/process-item-image",
            json={"itemId": str(uuid.uuid4())},
            name="/process-item-image [direct]",
            catch_response=True,
        ) as response:
            _check(response)

    @task(1)
    def invalid_request(self):
        with self.client.post(
            "/process-item-image",
            json={"itemId": "not-a-uuid"},
            name="/process-item-image [invalid]",
            catch_response=True,
        ) as response:
            if response.status_code == 400:
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")

    @task(1)
    def get_health(self):
        """Get health status."""
        with self.client.get("/health", catch_response=True) as response:
            if response.status_code == 200:
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")


class ConcurrentTriggerUser(HttpUser):
    """Many overlapping queue triggers; job claims must never double-process."""

    wait_time = between(0.01, 0.1)

    @task
    def trigger_queue(self):
        with self.client.post("/process-item-image", json={}, catch_response=True) as response:
            _check(response)


# Locust configuration
class WebsiteUser(ImagePipelineUser):
    """Main user class for the load test."""
    pass
