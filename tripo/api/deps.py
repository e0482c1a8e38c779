from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from tripo.core.errors import GatewayFailure
from tripo.core.security import Principal, principal_from_token
from tripo.db.session import SessionLocal
from tripo.services.booking_coordinator import BookingCoordinator
from tripo.services.gateway_client import GatewayClient, GatewayError, gateway_client_from_settings
from tripo.services.notification_service import NotificationService

bearer = HTTPBearer(auto_error=False)

def get_current_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return principal_from_token(creds.credentials)
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

def require_roles(*roles: str):
    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal
    return _guard

def get_notifier() -> NotificationService:
    return NotificationService(SessionLocal)

def get_coordinator(notifier: NotificationService = Depends(get_notifier)) -> BookingCoordinator:
    return BookingCoordinator(SessionLocal, notifier)

def get_gateway_client() -> GatewayClient:
    try:
        return gateway_client_from_settings()
    except GatewayError as e:
        raise GatewayFailure(str(e))
