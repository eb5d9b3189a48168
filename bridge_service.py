#!/usr/bin/env python3
"""
Shim module delegating to am2kafka.bridge_service.
This file exists to allow `python bridge_service.py` local runs from a checkout.
"""

import sys

from am2kafka.bridge_service import create_app, main  # noqa: F401


if __name__ == '__main__':
    sys.exit(main())
