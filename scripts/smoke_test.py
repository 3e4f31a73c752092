#!/usr/bin/env python3
"""Smoke test against a running API and worker pool."""

import sys
import time
import uuid

import requests

BASE_URL = "http://localhost:8000"


def check_health():
    """Check the health endpoint."""
    print("🧪 Checking health...")
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=5)
    except requests.RequestException as e:
        print(f"❌ Health check failed: {e}")
        return False

    if response.status_code != 200:
        print(f"❌ Health check failed: {response.status_code}")
        return False

    data = response.json()
    print(f"✅ Health: {data.get('status')} (ready={data.get('queue_size')}, delayed={data.get('delayed_size')})")
    return data.get("redis_connected", False)


def poll(job_id, timeout_seconds=30):
    """Poll a job until it reaches a terminal status."""
    deadline = time.time() + timeout_seconds
    while time.time() < deadline:
        data = requests.get(f"{BASE_URL}/jobs/{job_id}", timeout=5).json()
        if data["status"] in ("completed", "failed", "cancelled", "not_found"):
            return data
        print(f"   ... {data['status']} {data.get('progress')}%")
        time.sleep(1)
    return {"status": "timeout"}


def check_feedback_job():
    """Submit a feedback job; the row need not exist, so a failure is also informative."""
    print("\n🧪 Submitting feedback job...")
    payload = {
        "feedback_id": str(uuid.uuid4()),
        "project_id": str(uuid.uuid4()),
        "text": "The export button is broken and I am frustrated",
    }
    response = requests.post(f"{BASE_URL}/feedback/jobs", json=payload, timeout=5)
    if response.status_code != 200:
        print(f"❌ Submission failed: {response.status_code}")
        return False

    job_id = response.json()["job_id"]
    print(f"✅ Feedback job queued: {job_id}")
    status = requests.get(f"{BASE_URL}/jobs/{job_id}", timeout=5).json()
    print(f"✅ Initial status: {status['status']}")
    return status["status"] in ("pending", "processing", "completed", "failed")


def check_insight_job():
    """Request insights twice; the second call may be served from cache."""
    print("\n🧪 Requesting insights...")
    payload = {"user_id": "smoke-user", "project_id": None}
    first = requests.post(f"{BASE_URL}/insights/jobs", json=payload, timeout=5).json()
    if first.get("cached"):
        print("✅ Insights served from cache")
        return True

    result = poll(first["job_id"])
    print(f"✅ Insights job finished: {result['status']}")
    second = requests.post(f"{BASE_URL}/insights/jobs", json=payload, timeout=5).json()
    print(f"✅ Second request cached: {second.get('cached')}")
    return result["status"] == "completed" and second.get("cached", False)


def check_cancel():
    """Cancelling an unknown job is harmless."""
    print("\n🧪 Cancelling unknown job...")
    response = requests.delete(f"{BASE_URL}/jobs/{uuid.uuid4().hex}", timeout=5)
    ok = response.status_code == 200
    print("✅ Cancel is idempotent" if ok else f"❌ Cancel failed: {response.status_code}")
    return ok


def main():
    """Main smoke test function."""
    print("🚀 Starting feedback jobs smoke test")
    print("=" * 50)

    checks = [
        ("Health", check_health),
        ("Feedback job", check_feedback_job),
        ("Insight job", check_insight_job),
        ("Cancel", check_cancel),
    ]

    passed = 0
    for name, check in checks:
        try:
            if check():
                passed += 1
        except Exception as e:
            print(f"❌ {name} check crashed: {e}")

    print("\n" + "=" * 50)
    print(f"📊 Results: {passed}/{len(checks)} checks passed")
    return 0 if passed == len(checks) else 1


if __name__ == "__main__":
    sys.exit(main())
