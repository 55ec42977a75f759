from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import user_id_from_token
from app.services.exceptions import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
	id: str


def get_current_user(
	request: Request,
	credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
	"""Resolve the caller from an identity-provider bearer token."""
	correlation_id = getattr(request.state, "correlation_id", None)
	if credentials is None or not credentials.credentials:
		raise AuthenticationError("Missing bearer token", correlation_id=correlation_id)
	user_id = user_id_from_token(credentials.credentials)
	if not user_id:
		raise AuthenticationError("Invalid or expired token", correlation_id=correlation_id)
	request.state.user_id = user_id
	return CurrentUser(id=user_id)
