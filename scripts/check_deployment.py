#!/usr/bin/env python3
"""
Deployment check for the Cognitia backend.
Hits the health endpoint, the CORS preflight and, with credentials, the login
and the student quiz listing.
"""

import os
import sys
from datetime import datetime

import requests

# Configuration
BACKEND_URL = os.getenv("COGNITIA_BACKEND_URL", "http://127.0.0.1:8000").rstrip("/")
FRONTEND_URL = os.getenv("COGNITIA_FRONTEND_URL", "http://localhost:5173")
CHECK_EMAIL = os.getenv("COGNITIA_CHECK_EMAIL")
CHECK_PASSWORD = os.getenv("COGNITIA_CHECK_PASSWORD")


def print_section(title):
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}\n")


def check_health():
    print_section("Backend Health")
    try:
        response = requests.get(f"{BACKEND_URL}/api/health", timeout=10)
    except requests.exceptions.Timeout:
        print("FAIL  Backend timeout - service might be sleeping, try again in 30 seconds")
        return False
    except requests.exceptions.ConnectionError:
        print(f"FAIL  Cannot connect to {BACKEND_URL}")
        return False

    print(f"   Status Code: {response.status_code}")
    if response.status_code != 200:
        return False
    data = response.json()
    for key in ("status", "environment", "database", "ai_enabled"):
        print(f"   {key}: {data.get(key)}")
    return data.get("database") == "connected"


def check_cors():
    print_section("CORS Preflight")
    headers = {
        "Origin": FRONTEND_URL,
        "Access-Control-Request-Method": "POST",
        "Access-Control-Request-Headers": "Content-Type",
    }
    try:
        response = requests.options(f"{BACKEND_URL}/api/v1/auth/login", headers=headers, timeout=10)
    except requests.exceptions.RequestException as e:
        print(f"FAIL  CORS request failed: {e}")
        return False

    allowed_origin = response.headers.get("Access-Control-Allow-Origin")
    print(f"   Status Code: {response.status_code}")
    print(f"   Access-Control-Allow-Origin: {allowed_origin}")
    if allowed_origin not in (FRONTEND_URL, "*"):
        print(f"   Expected: {FRONTEND_URL}")
        return False
    return True


def check_login_and_quizzes():
    print_section("Login and Quiz Listing")
    if not CHECK_EMAIL or not CHECK_PASSWORD:
        print("   Skipped: set COGNITIA_CHECK_EMAIL and COGNITIA_CHECK_PASSWORD for a student account")
        return True
    try:
        response = requests.post(
            f"{BACKEND_URL}/api/v1/auth/login",
            json={"email": CHECK_EMAIL, "password": CHECK_PASSWORD},
            timeout=10,
        )
        if response.status_code != 200:
            print(f"FAIL  Login returned {response.status_code}: {response.text[:200]}")
            return False
        token = response.json()["access_token"]
        response = requests.get(
            f"{BACKEND_URL}/api/v1/student/quizzes/pending",
            headers={"Authorization": f"Bearer {token}"},
            timeout=10,
        )
    except requests.exceptions.RequestException as e:
        print(f"FAIL  Request failed: {e}")
        return False

    print(f"   Status Code: {response.status_code}")
    if response.status_code != 200:
        print(f"   Response: {response.text[:200]}")
        return False
    print(f"   {len(response.json())} pending quizzes")
    return True


def main():
    print(f"\n{'#' * 60}")
    print("#  Cognitia Deployment Check")
    print(f"#  {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"{'#' * 60}")
    print(f"\n  Backend:  {BACKEND_URL}")
    print(f"  Frontend: {FRONTEND_URL}")

    results = {
        "Backend Health": check_health(),
        "CORS Configuration": check_cors(),
        "Login and Quizzes": check_login_and_quizzes(),
    }

    print_section("Summary")
    for name, passed in results.items():
        print(f"{'PASS' if passed else 'FAIL'}  {name}")
    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
