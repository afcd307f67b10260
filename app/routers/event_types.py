from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.container import Services
from app.routers.common import get_services
from app.schemas.notifications import (
    EventTypeCreate,
    EventTypeResponse,
    EventTypeRolesUpdate,
)
from app.services.event_types import resolve_event_type

router = APIRouter(prefix="/event-types", tags=["event-types"])


@router.post("", response_model=EventTypeResponse)
def ensure_event_type(
    payload: EventTypeCreate,
    actor_id: str = Header(alias="X-Actor-Id"),
    services: Services = Depends(get_services),
) -> EventTypeResponse:
    event_type_id = services.event_types.ensure_exists(
        payload.name, actor_id, payload.description
    )
    return EventTypeResponse(id=event_type_id, name=resolve_event_type(payload.name).value)


@router.get("/{name}/roles")
def get_event_type_roles(name: str, services: Services = Depends(get_services)) -> dict:
    event_type = resolve_event_type(name)
    return {
        "event_type": event_type.value,
        "roles": sorted(services.roles.applicable_roles(event_type)),
    }


@router.put("/{name}/roles")
def update_event_type_roles(
    name: str,
    payload: EventTypeRolesUpdate,
    actor_id: str = Header(alias="X-Actor-Id"),
    services: Services = Depends(get_services),
) -> dict:
    try:
        roles = services.roles.set_roles(name, payload.roles, actor_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return {"event_type": resolve_event_type(name).value, "roles": sorted(roles)}
