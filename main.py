#!/usr/bin/env python3
"""
Development launcher for the control deck.

- Stops control-deck.service on startup if it is running
- Runs the panel in the foreground with debug logging
- Ctrl-C exits cleanly
"""

import os
import subprocess
import sys

from deck import panel

SERVICE = "control-deck.service"


def stop_service():
    result = subprocess.run(
        ["systemctl", "--user", "is-active", "--quiet", SERVICE],
        check=False,
    )
    if result.returncode == 0:
        print(f"[dev] Stopping {SERVICE} ...", flush=True)
        subprocess.run(["systemctl", "--user", "stop", SERVICE], check=False)


def main():
    os.environ.setdefault("DEV", "1")
    try:
        stop_service()
    except FileNotFoundError:
        print("[dev] systemctl not found; not touching the service", flush=True)
    print("[dev] Running control deck (Ctrl-C to exit)", flush=True)
    return panel.main(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
