from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core import config


# Login is unauthenticated, so it is limited per client address
limiter = Limiter(key_func=get_remote_address)

login_limit = limiter.limit(config.LOGIN_RATE_LIMIT)
