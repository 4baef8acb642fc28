"""FastAPI dependencies for authenticated pull requests."""
from typing import Optional

from fastapi import Header, Request

from .identity import Identity, bearer_token


def get_current_identity(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Identity:
    """Resolve the caller from the Authorization header.

    Raises AuthenticationError (rendered as 401) when the token is missing
    or invalid. Synchronous, so FastAPI resolves it in the threadpool.
    """
    services = request.app.state.services
    identity = services.identities.resolve(bearer_token(authorization))
    services.users.remember(identity)
    return identity
