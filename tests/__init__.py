"""tinker-runtime test suite.

Unit tests live in tests/unit and run against in-memory fakes (tests/fakes.py)
or httpx.MockTransport; no network access is needed.
"""
