"""
Pytest configuration shared by every test module.
TESTING must be set before core.config is imported so the in-memory
database and the in-process Redis stand-in are selected.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_placeholder")
