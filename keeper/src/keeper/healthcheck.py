"""
Healthcheck module for the keeper container.

Used by the Docker healthcheck to verify that the keeper can import its
modules and that its configuration loads.  It does not probe the ledger;
liveness of the scan loop is visible through the
``keeper_last_scan_timestamp`` metric.
"""

import sys

from .errors import ConfigurationError


def main() -> None:
    try:
        # Importing the package verifies the third-party dependencies are present.
        import keeper  # noqa: F401
    except ImportError as exc:  # pragma: no cover - healthcheck only
        print(f"Import error: {exc}", file=sys.stderr)
        sys.exit(1)
    from .config import load_config

    try:
        load_config()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    print("ok")


if __name__ == "__main__":
    main()
