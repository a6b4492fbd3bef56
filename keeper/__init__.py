"""Top-level package for the keeper processes.

This file ensures that the ``keeper`` directory is treated as a Python
package, allowing imports such as ``keeper.src.keeper`` to resolve when
running tests or other tooling from the repository root.

It also exposes the ``services`` and ``clients`` subpackages at the top
level so that callers can import ``keeper.services`` without the
intermediate ``src`` prefix.
"""

from __future__ import annotations

import importlib
import sys

for _name in ("services", "clients"):
    _module = importlib.import_module(f"{__name__}.src.keeper.{_name}")
    sys.modules[f"{__name__}.{_name}"] = _module
