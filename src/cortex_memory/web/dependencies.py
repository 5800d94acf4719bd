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
FastAPI dependencies for the HTTP interface.

Components are built once in the app lifespan and stored on ``app.state``;
these helpers hand them to route handlers.
"""

import logging

from fastapi import Depends, HTTPException, Request

from ..services.graph_service import GraphService
from ..services.memory_service import MemoryService
from ..services.retrieval_engine import RetrievalEngine
from ..storage.factory import ServiceComponents

logger = logging.getLogger(__name__)


def get_components(request: Request) -> ServiceComponents:
    """Get the components built at startup."""
    components: ServiceComponents | None = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return components


def get_current_user_id(request: Request) -> str:
    """
    Verified user id placed in a trusted header by the upstream identity provider.

    Raises:
        HTTPException: 401 when the header is missing or blank
    """
    header = request.app.state.settings.server.user_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        logger.debug(f"Rejected request to {request.url.path}: missing {header}")
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def get_memory_service(components: ServiceComponents = Depends(get_components)) -> MemoryService:
    return components.memory_service


def get_retrieval_engine(components: ServiceComponents = Depends(get_components)) -> RetrievalEngine:
    return components.engine


def get_graph_service(components: ServiceComponents = Depends(get_components)) -> GraphService:
    return components.graph_service
