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
Health check endpoint. Not behind identity.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ...models.responses import HealthResponse

router = APIRouter()


def _utc_iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health(request: Request):
    """
    Liveness plus vector index state.

    ``status`` is ``degraded`` while the index is unavailable; the service
    still answers lexical searches in that state.
    """
    components = getattr(request.app.state, "components", None)
    if components is None:
        vector_status: dict[str, object] = {"available": False}
    else:
        vector_status = await components.vector_index.health()

    return HealthResponse(
        status="ok" if vector_status.get("available") else "degraded",
        timestamp=_utc_iso_now(),
        version=request.app.state.settings.server.version,
        vector_index=vector_status,
    )
