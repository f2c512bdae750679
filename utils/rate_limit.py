"""Shared slowapi limiter, kept apart from main.py so routes can import it."""
from slowapi import Limiter
from slowapi.util import get_remote_address

# In-memory storage (no storage_uri)
limiter = Limiter(key_func=get_remote_address)
