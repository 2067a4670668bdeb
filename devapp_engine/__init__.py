"""Development-application record extraction engine.

This package focuses on turning laid-out report pages into records:
- page text fragments (OCR of embedded images, or native PDF words)
- record groups anchored on the "Dev App No." label
- result.json (records) and review_queue.json (rejected groups)

Downloading reports and publishing records elsewhere are out of scope.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
