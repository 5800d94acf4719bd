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
Search endpoint for the HTTP interface.
"""

import logging

from fastapi import APIRouter, Depends

from ...models.search import SearchRequest, SearchResponse
from ...services.retrieval_engine import RetrievalEngine
from ..dependencies import get_current_user_id, get_retrieval_engine

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/search", response_model=SearchResponse, tags=["search"])
async def search_memories(
    body: SearchRequest,
    user_id: str = Depends(get_current_user_id),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
):
    """
    Semantic, text or hybrid search over the caller's memories.

    Hybrid (the default) runs both paths concurrently and fuses them by
    memory id; if one path fails the other's results are returned.
    """
    response = await engine.search(user_id, body)
    logger.debug(f"Search '{body.search_type}' returned {response.total} results in {response.took_ms}ms")
    return response
