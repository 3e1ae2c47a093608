"""Template catalog and per-operator template draft / live preview."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from engage.api.deps import get_console
from engage.core.errors import ChatServiceError, MalformedTemplate, TemplateNotApproved, TemplateNotFound
from engage.services.console import OperatorConsole
from engage.services.templates import TemplateDefinition

router = APIRouter()


class DraftOpen(BaseModel):
    template_id: str


class DraftVariable(BaseModel):
    name: str
    value: str = ""


def _draft(console: OperatorConsole) -> dict:
    return {
        "template": console.draft.model_dump() if console.draft else None,
        "variables": console.draft_variables,
        "preview": console.preview(),
    }


@router.get("/")
async def list_templates(approved_only: bool = False, console: OperatorConsole = Depends(get_console)):
    templates = console.catalog.approved() if approved_only else console.catalog.all()
    return [t.model_dump() for t in templates]


@router.post("/")
async def register_template(body: TemplateDefinition, console: OperatorConsole = Depends(get_console)):
    try:
        template = console.catalog.register(body)
    except MalformedTemplate as e:
        raise HTTPException(status_code=422, detail=str(e))
    return template.model_dump()


@router.post("/sync")
async def sync_templates(console: OperatorConsole = Depends(get_console)):
    try:
        templates = await console.load_templates()
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "synced", "count": len(templates)}


@router.get("/draft")
async def get_draft(console: OperatorConsole = Depends(get_console)):
    return _draft(console)


@router.post("/draft")
async def open_draft(body: DraftOpen, console: OperatorConsole = Depends(get_console)):
    try:
        console.open_template(body.template_id)
    except TemplateNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TemplateNotApproved as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _draft(console)


@router.put("/draft/variables")
async def set_draft_variable(body: DraftVariable, console: OperatorConsole = Depends(get_console)):
    if console.draft is None:
        raise HTTPException(status_code=409, detail="No template open")
    console.toggle_preview_variable(body.name, body.value)
    return _draft(console)


@router.delete("/draft")
async def close_draft(console: OperatorConsole = Depends(get_console)):
    console.close_template()
    return {"status": "closed"}
