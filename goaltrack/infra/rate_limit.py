from slowapi import Limiter
from slowapi.util import get_remote_address

# Per-IP limiter shared by the app and decorated routes
limiter = Limiter(key_func=get_remote_address)
