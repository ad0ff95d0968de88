"""One-shot health probe, exit code 0 when /health answers 200."""
import os
import sys

import requests
from dotenv import load_dotenv


def main() -> int:
    load_dotenv()
    port = os.getenv("PORT", "3000")
    url = os.getenv("HEALTH_URL", f"http://localhost:{port}/health")
    try:
        r = requests.get(url, timeout=5)
    except requests.RequestException as e:
        print(f"Health check failed: {e}")
        return 1
    if r.status_code != 200:
        print(f"Health check failed: HTTP {r.status_code}")
        return 1
    print("Health check passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
