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
Unit tests for the Qdrant vector index gateway - FOCUSED on testable units.

These tests verify:
1. Provisioning (create, verify, race tolerance, failure surfacing)
2. Input validation on upsert
3. userId filter on every query
4. Circuit breaker behaviour

For behaviour against a real in-process Qdrant, see:
tests/integration/test_qdrant_vector_index.py
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import MatchValue

from cortex_memory.exceptions import IndexUnavailableError
from cortex_memory.storage.vector_index import PAYLOAD_INDEXES, QdrantVectorIndex, is_retryable_error

VECTOR_SIZE = 4


def _collections(*names):
    return SimpleNamespace(collections=[SimpleNamespace(name=name) for name in names])


def _collection_info(size: int):
    return SimpleNamespace(config=SimpleNamespace(params=SimpleNamespace(vectors=SimpleNamespace(size=size))))


def _scored(point_id: str, score: float, payload: dict | None):
    return SimpleNamespace(id=point_id, score=score, payload=payload)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.get_collections.return_value = _collections()
    return mock


@pytest.fixture
async def index(client):
    vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)
    await vector_index.ensure_index()
    return vector_index


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    def test_url_and_path_are_exclusive(self):
        with pytest.raises(ValueError, match="Cannot specify both"):
            QdrantVectorIndex(vector_size=4, url="http://localhost:6333", storage_path="/tmp/q")

    def test_location_required(self):
        with pytest.raises(ValueError, match="Must specify"):
            QdrantVectorIndex(vector_size=4)

    def test_vector_size_must_be_positive(self):
        with pytest.raises(ValueError):
            QdrantVectorIndex(vector_size=0, url=":memory:")

    def test_mode_detection(self):
        assert QdrantVectorIndex(vector_size=4, url=":memory:").mode == "in-process"
        assert QdrantVectorIndex(vector_size=4, url="http://q:6333").mode == "server"
        assert QdrantVectorIndex(vector_size=4, storage_path="/tmp/q").mode == "embedded"

    def test_constructor_does_not_connect(self):
        vector_index = QdrantVectorIndex(vector_size=4, url="http://unreachable:6333")
        assert vector_index.client is None
        assert vector_index.is_available is False


# =============================================================================
# Provisioning
# =============================================================================


class TestEnsureIndex:
    async def test_creates_missing_collection(self, client):
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        await vector_index.ensure_index()

        assert vector_index.is_available
        client.create_collection.assert_called_once()
        assert client.create_collection.call_args.kwargs["vectors_config"].size == VECTOR_SIZE
        indexed = {call.kwargs["field_name"] for call in client.create_payload_index.call_args_list}
        assert indexed == set(PAYLOAD_INDEXES)

    async def test_existing_collection_is_verified(self, client):
        client.get_collections.return_value = _collections("test")
        client.get_collection.return_value = _collection_info(VECTOR_SIZE)
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        await vector_index.ensure_index()

        client.create_collection.assert_not_called()
        assert vector_index.is_available

    async def test_dimension_mismatch_is_surfaced(self, client):
        client.get_collections.return_value = _collections("test")
        client.get_collection.return_value = _collection_info(768)
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        with pytest.raises(IndexUnavailableError, match="vector size 768"):
            await vector_index.ensure_index()
        assert not vector_index.is_available

    async def test_tolerates_creation_race(self, client):
        """Another process creates the collection between our check and our create."""
        client.get_collections.side_effect = [_collections(), _collections("test")]
        client.create_collection.side_effect = RuntimeError("already exists")
        client.get_collection.return_value = _collection_info(VECTOR_SIZE)
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        await vector_index.ensure_index()

        assert vector_index.is_available

    async def test_unreachable_index_is_surfaced(self, client):
        client.get_collections.side_effect = ConnectionError("refused")
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        with pytest.raises(IndexUnavailableError):
            await vector_index.ensure_index()
        assert not vector_index.is_available

    async def test_operations_fail_fast_until_provisioned(self, client):
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)

        with pytest.raises(IndexUnavailableError, match="not provisioned"):
            await vector_index.query([0.1] * VECTOR_SIZE, "alice", 5)
        client.query_points.assert_not_called()

    async def test_failed_provisioning_waits_before_retrying(self, client):
        client.get_collections.side_effect = ConnectionError("refused")
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)
        with pytest.raises(IndexUnavailableError):
            await vector_index.ensure_index()

        with pytest.raises(IndexUnavailableError, match="not provisioned"):
            await vector_index.upsert([0.1] * VECTOR_SIZE, {"memoryId": "m1", "userId": "alice"})
        assert client.get_collections.call_count == 1

    async def test_failed_provisioning_recovers_after_delay(self, client):
        client.get_collections.side_effect = [ConnectionError("refused"), _collections()]
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)
        with pytest.raises(IndexUnavailableError):
            await vector_index.ensure_index()

        vector_index._next_provision_attempt = datetime.now() - timedelta(seconds=1)
        point_id = await vector_index.upsert([0.1] * VECTOR_SIZE, {"memoryId": "m1", "userId": "alice"})

        assert point_id
        assert vector_index.is_available
        client.create_collection.assert_called_once()
        client.upsert.assert_called_once()

    async def test_health_retries_provisioning(self, client):
        client.get_collections.side_effect = [ConnectionError("refused"), _collections()]
        vector_index = QdrantVectorIndex(vector_size=VECTOR_SIZE, collection_name="test", client=client)
        with pytest.raises(IndexUnavailableError):
            await vector_index.ensure_index()
        assert (await vector_index.health())["available"] is False

        vector_index._next_provision_attempt = datetime.now() - timedelta(seconds=1)

        assert (await vector_index.health())["available"] is True


# =============================================================================
# Operations
# =============================================================================


class TestUpsert:
    async def test_dimension_validated(self, index):
        with pytest.raises(ValueError, match="dimension mismatch"):
            await index.upsert([0.1, 0.2], {"memoryId": "m1", "userId": "alice"})

    async def test_metadata_requires_owner_and_memory(self, index):
        with pytest.raises(ValueError, match="userId and memoryId"):
            await index.upsert([0.1] * VECTOR_SIZE, {"memoryId": "m1"})

    async def test_generates_point_id(self, index, client):
        point_id = await index.upsert([0.1] * VECTOR_SIZE, {"memoryId": "m1", "userId": "alice"})

        assert point_id
        point = client.upsert.call_args.kwargs["points"][0]
        assert point.id == point_id
        assert point.payload["memoryId"] == "m1"
        assert client.upsert.call_args.kwargs["wait"] is True

    async def test_reuses_given_point_id(self, index):
        point_id = "9b1deb4d-3b7d-4bad-9bdd-2b0d7b3dcb6d"
        assert await index.upsert([0.1] * VECTOR_SIZE, {"memoryId": "m1", "userId": "alice"}, point_id) == point_id


class TestQuery:
    async def test_user_filter_always_applied(self, index, client):
        client.query_points.return_value = SimpleNamespace(points=[])

        await index.query([0.1] * VECTOR_SIZE, "alice", 5)

        query_filter = client.query_points.call_args.kwargs["query_filter"]
        assert query_filter.must[0].key == "userId"
        assert query_filter.must[0].match == MatchValue(value="alice")

    async def test_results_sorted_and_sanitised(self, index, client):
        client.query_points.return_value = SimpleNamespace(
            points=[
                _scored("p1", 0.4, {"memoryId": "m1", "userId": "alice"}),
                _scored("p2", 0.9, {"memoryId": "m2", "userId": "alice"}),
                _scored("p3", 0.95, {"userId": "alice"}),
            ]
        )

        matches = await index.query([0.1] * VECTOR_SIZE, "alice", 5)

        assert [m.memory_id for m in matches] == ["m2", "m1"]
        assert matches[0].point_id == "p2"

    async def test_zero_top_k(self, index, client):
        assert await index.query([0.1] * VECTOR_SIZE, "alice", 0) == []
        client.query_points.assert_not_called()


# =============================================================================
# Circuit Breaker
# =============================================================================


class TestCircuitBreaker:
    async def test_opens_after_threshold(self, index, client):
        client.query_points.side_effect = RuntimeError("boom")

        for _ in range(index._failure_threshold):
            with pytest.raises(IndexUnavailableError, match="query failed"):
                await index.query([0.1] * VECTOR_SIZE, "alice", 5)

        with pytest.raises(IndexUnavailableError, match="Circuit breaker is open"):
            await index.query([0.1] * VECTOR_SIZE, "alice", 5)
        assert client.query_points.call_count == index._failure_threshold

    async def test_success_resets_failures(self, index, client):
        client.query_points.side_effect = [RuntimeError("boom"), SimpleNamespace(points=[])]

        with pytest.raises(IndexUnavailableError):
            await index.query([0.1] * VECTOR_SIZE, "alice", 5)
        await index.query([0.1] * VECTOR_SIZE, "alice", 5)

        assert index._failure_count == 0


class TestRetryClassification:
    def test_server_errors_are_retryable(self):
        error = UnexpectedResponse(status_code=503, reason_phrase="Unavailable", content=b"", headers=httpx.Headers())
        assert is_retryable_error(error)

    def test_client_errors_are_not(self):
        error = UnexpectedResponse(status_code=404, reason_phrase="Not Found", content=b"", headers=httpx.Headers())
        assert not is_retryable_error(error)

    def test_other_errors_are_not(self):
        assert not is_retryable_error(RuntimeError("boom"))
