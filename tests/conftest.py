"""
Shared test configuration.

Adds src/ to sys.path so flat modules (correlation_engine, promotion, ...)
and the analytics/pipeline/routes directories import by plain name.
"""

import os
import sys

_src_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))

if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)
