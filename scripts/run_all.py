#!/usr/bin/env python3
"""Script to run the REST API together with a periodic queue trigger."""

import os
import subprocess
import sys
import time

import requests
import structlog

logger = structlog.get_logger()

API_URL = os.environ.get("PIPELINE_API_URL", "http://localhost:8000")
TRIGGER_INTERVAL_SECONDS = float(os.environ.get("TRIGGER_INTERVAL_SECONDS", "60"))


def run_command(cmd, name):
    """Run a command in a subprocess."""
    logger.info(f"Starting {name}", command=cmd)
    return subprocess.Popen(cmd)


def trigger_queue(recover_stale: bool):
    """POST one queue-mode request, the way the scheduled caller does."""
    try:
        response = requests.post(
            f"{API_URL}/process-item-image",
            json={"recoverStale": recover_stale},
            timeout=300,
        )
        body = response.json()
        logger.info(
            "Queue trigger finished",
            status_code=response.status_code,
            processed=body.get("processed"),
            failed=body.get("failed"),
            recovered=body.get("recovered"),
        )
    except (requests.RequestException, ValueError) as e:
        logger.error("Queue trigger failed", error=str(e))


def main():
    """Main function to run all components."""
    processes = []

    try:
        api_process = run_command([sys.executable, "-m", "image_pipeline.api.rest"], "REST API")
        processes.append(("REST API", api_process))

        # Wait a bit for API to start
        time.sleep(2)

        logger.info("All components started. Press Ctrl+C to stop.", trigger_interval=TRIGGER_INTERVAL_SECONDS)

        # stale recovery on every tenth trigger
        tick = 0
        while True:
            for name, process in processes:
                if process.poll() is not None:
                    logger.error(f"{name} process died", returncode=process.returncode)
                    return

            trigger_queue(recover_stale=tick % 10 == 0)
            tick += 1
            time.sleep(TRIGGER_INTERVAL_SECONDS)

    except KeyboardInterrupt:
        logger.info("Shutting down all components...")

        for name, process in processes:
            logger.info(f"Stopping {name}")
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning(f"Force killing {name}")
                process.kill()

        logger.info("All components stopped")


if __name__ == "__main__":
    main()
