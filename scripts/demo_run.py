#!/usr/bin/env python3
"""Demo script: run the sample manifest through the stepgate HTTP server."""

import argparse
import json
import sys
from pathlib import Path

import requests

ROOT = Path(__file__).parent.parent


def main():
    """Submit a manifest to a running server and print its report."""
    parser = argparse.ArgumentParser(description="stepgate HTTP demo")
    parser.add_argument("--url", default="http://localhost:8000", help="stepgate server URL")
    parser.add_argument(
        "--manifest",
        default=str(ROOT / "examples" / "sample_manifest.yaml"),
        help="Manifest to execute",
    )
    parser.add_argument("--no-commit", action="store_true", help="Apply steps without committing")
    args = parser.parse_args()

    print("stepgate Demo")
    print("=" * 60)
    print(f"Manifest: {args.manifest}")
    print(f"Server: {args.url}")

    try:
        response = requests.get(f"{args.url}/health", timeout=5)
        if response.status_code != 200:
            print("ERROR: stepgate server is not responding correctly")
            sys.exit(1)
        print("SUCCESS: stepgate server is running")
    except requests.exceptions.RequestException:
        print("ERROR: Cannot connect to the stepgate server. Make sure it's running on port 8000")
        print("   Run: python main.py")
        sys.exit(1)

    status = requests.get(
        f"{args.url}/manifests/status", params={"manifest_path": args.manifest}, timeout=30
    )
    if status.status_code != 200:
        print(f"ERROR: Manifest is invalid: {status.json().get('detail')}")
        sys.exit(2)
    pending = [s["id"] for s in status.json()["steps"] if s["status"] == "PENDING"]
    print(f"Pending steps: {', '.join(pending) or 'none'}")

    run_request = {"manifest_path": args.manifest}
    if args.no_commit:
        run_request["config"] = {"commits_enabled": False}

    print("\nSending run request...")
    try:
        response = requests.post(f"{args.url}/runs", json=run_request, timeout=1800)
    except requests.exceptions.Timeout:
        print("ERROR: Request timed out - the run may still be in progress")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"ERROR: Request failed: {e}")
        sys.exit(1)

    if response.status_code not in [200, 201]:
        print(f"ERROR: Request failed with status {response.status_code}")
        print(f"Response: {response.text}")
        sys.exit(1)

    report = response.json()
    print("\nReport:")
    print(json.dumps(report, indent=2))

    if report["status"] == "SUCCESS":
        print(f"\nSUCCESS: {len(report['commit_hashes'])} commits, score {report['final_score']}")
    else:
        print(f"\nWARNING: run stopped at step '{report.get('failed_step_id')}'")
    sys.exit(report["exit_code"])


if __name__ == "__main__":
    main()
