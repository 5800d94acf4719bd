# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Memory CRUD endpoints for the HTTP interface.

Handlers stay thin: validation lives in the request models, business rules
in ``MemoryService``, and error-to-status mapping in the app's exception
handlers.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ...models.memory import MemoryCreate, MemoryUpdate
from ...models.responses import (
    MemoryCreateResponse,
    MemoryEnvelope,
    MemoryListResponse,
    RelatedMemoriesResponse,
)
from ...models.validators import MemoryKind
from ...services.memory_service import MemoryService
from ..dependencies import get_current_user_id, get_memory_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/memories",
    response_model=MemoryCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["memories"],
)
async def create_memory(
    body: MemoryCreate,
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """Store a new memory and return it with the memories it was linked to."""
    memory, related = await memory_service.create_memory(user_id, body)
    return MemoryCreateResponse(memory=memory, related_memories=related)


@router.get("/memories", response_model=MemoryListResponse, tags=["memories"])
async def list_memories(
    request: Request,
    limit: int | None = Query(None, ge=1, description="Page size"),
    offset: int = Query(0, ge=0),
    kind: MemoryKind | None = Query(None, alias="type", description="Only memories of this type"),
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """List memories newest first."""
    search_settings = request.app.state.settings.search
    page_size = min(limit or search_settings.list_default_limit, search_settings.max_limit)
    memories, total = await memory_service.list_memories(user_id, limit=page_size, offset=offset, kind=kind)
    return MemoryListResponse(memories=memories, total=total)


@router.get("/memories/{memory_id}", response_model=MemoryEnvelope, tags=["memories"])
async def get_memory(
    memory_id: str,
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    memory = await memory_service.get_memory(user_id, memory_id)
    return MemoryEnvelope(memory=memory)


@router.get("/memories/{memory_id}/related", response_model=RelatedMemoriesResponse, tags=["memories"])
async def get_related_memories(
    memory_id: str,
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """Memories linked to this one at write time that still exist."""
    memories = await memory_service.get_related_memories(user_id, memory_id)
    return RelatedMemoriesResponse(memories=memories)


@router.patch("/memories/{memory_id}", response_model=MemoryEnvelope, tags=["memories"])
async def update_memory(
    memory_id: str,
    body: MemoryUpdate,
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """Partially update a memory; only fields present in the body change."""
    memory = await memory_service.update_memory(user_id, memory_id, body)
    return MemoryEnvelope(memory=memory)


@router.delete("/memories/{memory_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["memories"])
async def delete_memory(
    memory_id: str,
    user_id: str = Depends(get_current_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
):
    await memory_service.delete_memory(user_id, memory_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
