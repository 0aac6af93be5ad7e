#!/usr/bin/env python3
"""
API entrypoint - serves the instant-edit HTTP surface with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fieldguard.core.config import debug_enabled, validate_config


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the FieldGuard API server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    args = parser.parse_args(argv)

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"❌ Configuration issue: {issue}")
        return 1

    uvicorn.run("fieldguard.api.main:app", host=args.host, port=args.port, reload=debug_enabled())
    return 0


if __name__ == "__main__":
    sys.exit(main())
