"""Memory folder and block endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.deps import Services
from persistence.defaults import DEFAULT_FOLDER_TEMPLATES
from persistence.models import MemoryBlock, MemoryFolder

router = APIRouter(prefix="/memory", tags=["memory"])


# Request/Response models
class FolderCreate(BaseModel):
    name: str
    icon: str = "folder.fill"
    color: str = "blue"


class FolderUpdate(BaseModel):
    name: str | None = None
    icon: str | None = None
    color: str | None = None
    enabled: bool | None = None


class BlockCreate(BaseModel):
    title: str
    content: str
    enabled: bool = True


class BlockUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    enabled: bool | None = None


class EnabledUpdate(BaseModel):
    enabled: bool


class BlockResponse(BaseModel):
    id: str
    title: str
    content: str
    enabled: bool
    estimated_tokens: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_block(cls, block: MemoryBlock) -> "BlockResponse":
        return cls(
            id=block.id,
            title=block.title,
            content=block.content,
            enabled=block.enabled,
            estimated_tokens=block.estimated_tokens,
            created_at=block.created_at,
            updated_at=block.updated_at,
        )


class FolderResponse(BaseModel):
    id: str
    name: str
    icon: str
    color: str
    enabled: bool
    created_at: datetime
    blocks: list[BlockResponse]
    enabled_block_count: int
    total_estimated_tokens: int

    @classmethod
    def from_folder(cls, folder: MemoryFolder) -> "FolderResponse":
        return cls(
            id=folder.id,
            name=folder.name,
            icon=folder.icon,
            color=folder.color,
            enabled=folder.enabled,
            created_at=folder.created_at,
            blocks=[BlockResponse.from_block(b) for b in folder.blocks],
            enabled_block_count=len(folder.enabled_blocks),
            total_estimated_tokens=folder.total_estimated_tokens,
        )


class FolderListResponse(BaseModel):
    items: list[FolderResponse]
    total_enabled_tokens: int
    enabled_block_count: int


class TemplateResponse(BaseModel):
    key: str
    name: str
    icon: str
    color: str


class MemoryContextResponse(BaseModel):
    context: str
    total_enabled_tokens: int
    enabled_block_count: int


def _folder_or_404(services, folder_id: str) -> MemoryFolder:
    folder = services.memory.get_folder(folder_id)
    if folder is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    return folder


def _block_or_404(folder: MemoryFolder, block_id: str) -> MemoryBlock:
    block = folder.find_block(block_id)
    if block is None:
        raise HTTPException(status_code=404, detail="Memory block not found")
    return block


# -- Folders -----------------------------------------------------------------


@router.get("/folders", response_model=FolderListResponse)
async def list_folders(services: Services) -> FolderListResponse:
    """List all memory folders with their blocks."""
    memory = services.memory
    return FolderListResponse(
        items=[FolderResponse.from_folder(f) for f in memory.folders],
        total_enabled_tokens=memory.total_enabled_tokens,
        enabled_block_count=memory.enabled_block_count,
    )


@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates() -> list[TemplateResponse]:
    """Preset folders for quick setup."""
    return [TemplateResponse(key=key, **values) for key, values in DEFAULT_FOLDER_TEMPLATES.items()]


@router.post("/folders", response_model=FolderResponse, status_code=201)
async def create_folder(request: FolderCreate, services: Services) -> FolderResponse:
    """Create an empty memory folder."""
    folder = await services.memory.create_folder(
        MemoryFolder(name=request.name, icon=request.icon, color=request.color)
    )
    return FolderResponse.from_folder(folder)


@router.post("/folders/from-template/{template}", response_model=FolderResponse, status_code=201)
async def create_folder_from_template(template: str, services: Services) -> FolderResponse:
    """Create an empty folder from a preset template."""
    if template not in DEFAULT_FOLDER_TEMPLATES:
        raise HTTPException(status_code=404, detail="Template not found")
    folder = await services.memory.create_folder_from_template(template)
    return FolderResponse.from_folder(folder)


@router.get("/folders/{folder_id}", response_model=FolderResponse)
async def get_folder(folder_id: str, services: Services) -> FolderResponse:
    return FolderResponse.from_folder(_folder_or_404(services, folder_id))


@router.patch("/folders/{folder_id}", response_model=FolderResponse)
async def update_folder(folder_id: str, request: FolderUpdate, services: Services) -> FolderResponse:
    """Rename, restyle or enable/disable a folder."""
    folder = _folder_or_404(services, folder_id)
    updated = folder.model_copy(update=request.model_dump(exclude_none=True))
    if not await services.memory.update_folder(updated):
        raise HTTPException(status_code=404, detail="Folder not found")
    return FolderResponse.from_folder(updated)


@router.delete("/folders/{folder_id}")
async def delete_folder(folder_id: str, services: Services):
    if not await services.memory.delete_folder(folder_id):
        raise HTTPException(status_code=404, detail="Folder not found")
    return {"status": "deleted", "id": folder_id}


@router.post("/folders/{folder_id}/toggle", response_model=FolderResponse)
async def toggle_folder(folder_id: str, services: Services) -> FolderResponse:
    """Flip whether a folder's blocks are included in the prompt."""
    if not await services.memory.toggle_folder(folder_id):
        raise HTTPException(status_code=404, detail="Folder not found")
    return FolderResponse.from_folder(_folder_or_404(services, folder_id))


@router.put("/folders/{folder_id}/enabled", response_model=FolderResponse)
async def set_folder_enabled(folder_id: str, request: EnabledUpdate, services: Services) -> FolderResponse:
    if not await services.memory.toggle_folder_enabled(folder_id, request.enabled):
        raise HTTPException(status_code=404, detail="Folder not found")
    return FolderResponse.from_folder(_folder_or_404(services, folder_id))


# -- Blocks ------------------------------------------------------------------


@router.post("/folders/{folder_id}/blocks", response_model=BlockResponse, status_code=201)
async def add_block(folder_id: str, request: BlockCreate, services: Services) -> BlockResponse:
    """Add a memory block to a folder."""
    block = MemoryBlock(title=request.title, content=request.content, enabled=request.enabled)
    if not await services.memory.add_block(folder_id, block):
        raise HTTPException(status_code=404, detail="Folder not found")
    return BlockResponse.from_block(block)


@router.patch("/folders/{folder_id}/blocks/{block_id}", response_model=BlockResponse)
async def update_block(
    folder_id: str,
    block_id: str,
    request: BlockUpdate,
    services: Services,
) -> BlockResponse:
    """Edit a memory block."""
    block = _block_or_404(_folder_or_404(services, folder_id), block_id)
    updated = block.model_copy(update=request.model_dump(exclude_none=True))
    if not await services.memory.update_block(folder_id, updated):
        raise HTTPException(status_code=404, detail="Memory block not found")
    stored = _block_or_404(_folder_or_404(services, folder_id), block_id)
    return BlockResponse.from_block(stored)


@router.delete("/folders/{folder_id}/blocks/{block_id}")
async def delete_block(folder_id: str, block_id: str, services: Services):
    if not await services.memory.delete_block(folder_id, block_id):
        raise HTTPException(status_code=404, detail="Memory block not found")
    return {"status": "deleted", "id": block_id}


@router.post("/folders/{folder_id}/blocks/{block_id}/toggle", response_model=BlockResponse)
async def toggle_block(folder_id: str, block_id: str, services: Services) -> BlockResponse:
    """Flip whether a block is included in the prompt."""
    if not await services.memory.toggle_block(folder_id, block_id):
        raise HTTPException(status_code=404, detail="Memory block not found")
    return BlockResponse.from_block(_block_or_404(_folder_or_404(services, folder_id), block_id))


@router.put("/folders/{folder_id}/blocks/{block_id}/enabled", response_model=BlockResponse)
async def set_block_enabled(
    folder_id: str,
    block_id: str,
    request: EnabledUpdate,
    services: Services,
) -> BlockResponse:
    if not await services.memory.toggle_block_enabled(folder_id, block_id, request.enabled):
        raise HTTPException(status_code=404, detail="Memory block not found")
    return BlockResponse.from_block(_block_or_404(_folder_or_404(services, folder_id), block_id))


# -- Prompt context ----------------------------------------------------------


@router.get("/context", response_model=MemoryContextResponse)
async def get_memory_context(services: Services) -> MemoryContextResponse:
    """The memory text appended to the system prompt."""
    memory = services.memory
    return MemoryContextResponse(
        context=memory.formatted_context(),
        total_enabled_tokens=memory.total_enabled_tokens,
        enabled_block_count=memory.enabled_block_count,
    )
