"""
asgi.py -- Application assembly for TokenGate.

Settings are read exactly once, here. A missing, short, or malformed
SECRET_KEY / JWT_EXPIRE / JWT_REFRESH_EXPIRE raises during import, so the
server never starts with bad secret material.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
