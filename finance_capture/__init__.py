"""
Finance Capture - Source Package

Turns a spoken sentence or a scanned receipt into a structured finance
event and stores it locally.

DESIGN PRINCIPLES:
1. Capture → Extract → Validate → Persist, in that order, once per session
2. Fail early, fail visibly
3. No silent corrections of model output
4. Every step must be auditable
5. Speech, OCR, model and storage backends are swappable
"""

__version__ = "0.3.0"
__author__ = "Finance Capture Team"
