"""
Root pytest configuration.
Sets the testing environment before any project module reads settings, so the
app binds to in-memory SQLite, runs Celery tasks eagerly and uses the
in-process Redis stand-in.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("JWT_SECRET", "test-secret")
