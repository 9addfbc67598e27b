"""
Minimal CI smoke test against a running API instance and worker.

Checks:
- GET /api/health returns 200 and JSON
- POST /api/auth/register creates a user and returns a JWT
- POST /api/jobs/batch creates `--count` jobs
- GET /api/jobs lists them; polling until Done (or --timeout)
- GET /api/jobs/{id}/result returns the result
- DELETE /api/jobs/{id} twice returns 200 then 404

Usage:
  python scripts/ci_smoke.py --base http://localhost:8000/api
"""

from __future__ import annotations

import argparse
import os
import random
import string
import time

import httpx


def _rand_username() -> str:
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"ci-smoke-{rand}"


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default=os.environ.get("API_BASE", "http://localhost:8000/api"))
    ap.add_argument("--count", type=int, default=3)
    ap.add_argument("--timeout", type=float, default=120.0)
    args = ap.parse_args()

    base = args.base.rstrip("/")
    username = _rand_username()
    password = "Passw0rd!test"

    with httpx.Client(timeout=10.0) as client:
        r = client.get(f"{base}/health")
        r.raise_for_status()
        assert r.headers.get("content-type", "").startswith("application/json")

        r = client.post(f"{base}/auth/register", json={"username": username, "password": password})
        r.raise_for_status()
        headers = {"Authorization": f"Bearer {r.json()['token']}"}

        template = {"title": "smoke", "mode": "2D", "duration": 1, "tumorCount": 100, "immuneCount": 50}
        r = client.post(f"{base}/jobs/batch", json={"template": template, "count": args.count}, headers=headers)
        r.raise_for_status()
        job_ids = [job["id"] for job in r.json()["jobs"]]
        assert len(set(job_ids)) == args.count

        deadline = time.monotonic() + args.timeout
        while True:
            r = client.get(f"{base}/jobs", headers=headers)
            r.raise_for_status()
            statuses = {job["id"]: job["status"] for job in r.json()["jobs"]}
            if all(statuses.get(jid) == "Done" for jid in job_ids):
                break
            if time.monotonic() > deadline:
                raise SystemExit(f"SMOKE_TIMEOUT {statuses}")
            time.sleep(1.0)

        r = client.get(f"{base}/jobs/{job_ids[0]}/result", headers=headers)
        r.raise_for_status()
        assert r.json()["result"]["initialTumorCount"] == 100

        r = client.delete(f"{base}/jobs/{job_ids[0]}", headers=headers)
        r.raise_for_status()
        r = client.delete(f"{base}/jobs/{job_ids[0]}", headers=headers)
        assert r.status_code == 404, r.text

    print("SMOKE_OK", username)


if __name__ == "__main__":
    main()
