#!/usr/bin/env python3
"""Run kiosk-bridge from a checkout without installing it."""

import sys

from kiosk.app import main

if __name__ == "__main__":
    sys.exit(main())
