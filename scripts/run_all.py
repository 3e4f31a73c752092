#!/usr/bin/env python3
"""Script to run the API and the worker pool together."""

import subprocess
import time

import structlog

logger = structlog.get_logger()


def run_command(cmd, name):
    """Run a command in a subprocess."""
    logger.info(f"Starting {name}", command=cmd)
    return subprocess.Popen(cmd, shell=True)


def main():
    """Main function to run all components."""
    processes = []

    try:
        api_process = run_command("python -m feedback_jobs.api.rest", "REST API")
        processes.append(("REST API", api_process))

        # Wait a bit for API to start
        time.sleep(2)

        worker_process = run_command("python -m feedback_jobs.main", "Worker Pool")
        processes.append(("Worker Pool", worker_process))

        logger.info("All components started. Press Ctrl+C to stop.")

        while True:
            time.sleep(1)

            for name, process in processes:
                if process.poll() is not None:
                    logger.error(f"{name} process died", returncode=process.returncode)
                    return

    except KeyboardInterrupt:
        logger.info("Shutting down all components...")

    finally:
        for name, process in processes:
            if process.poll() is not None:
                continue
            logger.info(f"Stopping {name}")
            process.terminate()
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                logger.warning(f"Force killing {name}")
                process.kill()

        logger.info("All components stopped")


if __name__ == "__main__":
    main()
