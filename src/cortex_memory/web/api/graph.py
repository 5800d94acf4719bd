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
Graph view endpoint.
"""

from fastapi import APIRouter, Depends, Query

from ...models.responses import GraphResponse
from ...services.graph_service import GraphService
from ..dependencies import get_current_user_id, get_graph_service

router = APIRouter()


@router.get("/graph", response_model=GraphResponse, tags=["graph"])
async def get_graph(
    limit: int = Query(200, ge=1, le=1000, description="Maximum number of memories to include"),
    user_id: str = Depends(get_current_user_id),
    graph_service: GraphService = Depends(get_graph_service),
):
    """Nodes for the caller's memories with semantic and tag-based edges."""
    return await graph_service.build_graph(user_id, limit=limit)
