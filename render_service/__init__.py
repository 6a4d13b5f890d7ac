"""
Render Service - PDF generation from URLs and HTML documents.

Keeps one headless Chromium alive for the whole process, opens a page per
request and restarts the browser whenever a render fails.
"""

__version__ = "0.1.0"
