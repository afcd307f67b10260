from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.container import Services
from app.routers.common import get_services
from app.schemas.templates import TemplateCreate, TemplateResponse, TemplateUpdate

router = APIRouter(prefix="/templates", tags=["templates"])


def _not_found(template_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Template {template_id} not found",
    )


@router.get("/{channel}", response_model=list[TemplateResponse])
def list_templates(channel: str, services: Services = Depends(get_services)):
    try:
        return services.template_store.list_templates(channel)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/{channel}", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    channel: str,
    payload: TemplateCreate,
    actor_id: str = Header(alias="X-Actor-Id"),
    services: Services = Depends(get_services),
):
    try:
        return services.template_store.create(channel, payload, actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/{channel}/{template_id}", response_model=TemplateResponse)
def get_template(channel: str, template_id: str, services: Services = Depends(get_services)):
    try:
        template = services.template_store.get(channel, template_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if template is None:
        raise _not_found(template_id)
    return template


@router.patch("/{channel}/{template_id}", response_model=TemplateResponse)
def update_template(
    channel: str,
    template_id: str,
    payload: TemplateUpdate,
    actor_id: str = Header(alias="X-Actor-Id"),
    services: Services = Depends(get_services),
):
    try:
        template = services.template_store.update(channel, template_id, payload, actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if template is None:
        raise _not_found(template_id)
    return template


@router.delete("/{channel}/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    channel: str,
    template_id: str,
    actor_id: str = Header(alias="X-Actor-Id"),
    services: Services = Depends(get_services),
) -> None:
    try:
        deleted = services.template_store.delete(channel, template_id, actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not deleted:
        raise _not_found(template_id)
