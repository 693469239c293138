"""
Unit tests for the executor worker loop.

The JobRunner is driven synchronously: requests sit in a queue.Queue and
replies are collected in a list.
"""

import math
import queue

import pytest

from cluster_playground.api.executor_worker import SHUTDOWN, JobRunner, worker_main
from cluster_playground.core.clustering_engine import ClusteringEngine
from cluster_playground.schemas.data_models import parse_message


def cluster_request(job_id, algorithm="kmeans", data=None, **options):
    return {
        "type": "cluster",
        "job_id": job_id,
        "algorithm": algorithm,
        "data": data if data is not None else [[0, 0], [1, 0], [0, 1], [10, 10], [11, 10], [10, 11]],
        "options": options,
    }


def cancel_request(job_id):
    return {"type": "cancel", "job_id": job_id}


class DrainingQueue(queue.Queue):
    """Queue whose blocking get() returns the shutdown sentinel once empty."""

    def get(self, block=True, timeout=None):
        if block and self.empty():
            return SHUTDOWN
        return super().get(block, timeout)


@pytest.fixture
def requests_queue():
    return queue.Queue()


@pytest.fixture
def replies():
    return []


@pytest.fixture
def runner(requests_queue, replies):
    return JobRunner(
        requests_queue,
        replies.append,
        engine=ClusteringEngine({"kmeans": 1, "dbscan": 2, "hierarchical": 1}),
        cancel_poll_interval=0.0,
    )


def types_of(replies, job_id=None):
    return [r["type"] for r in replies if job_id is None or r.get("job_id") == job_id]


@pytest.mark.unit
class TestJobRunner:
    """Test suite for JobRunner message sequences."""

    @pytest.mark.parametrize(
        "algorithm,options",
        [
            ("kmeans", {"k": 2, "seed": 0}),
            ("dbscan", {"eps": 3, "minPts": 2}),
            ("hierarchical", {"numClusters": 2, "linkage": "single"}),
        ],
    )
    def test_started_progress_complete(self, runner, replies, algorithm, options):
        runner.handle(cluster_request("job-1", algorithm, **options))

        kinds = types_of(replies)
        assert kinds[0] == "started"
        assert kinds[-1] == "complete"
        assert set(kinds[1:-1]) == {"progress"}
        assert all(r["job_id"] == "job-1" for r in replies)

        started = replies[0]
        assert started["algorithm"] == algorithm
        assert started["n_points"] == 6

        result = replies[-1]["result"]
        assert sorted(len(c["indices"]) for c in result["clusters"]) == [3, 3]

    def test_dbscan_roles_and_estimates_cross_the_boundary(self, runner, replies):
        runner.handle(cluster_request("job-1", "dbscan", eps=None, minPts=2))

        message = parse_message(replies[-1])
        assert message.type == "complete"
        # eps lands exactly on the blob diagonal, so every point is core
        assert message.result.core_points == (0, 1, 2, 3, 4, 5)
        assert message.result.border_points == ()
        assert message.result.estimated_parameters["eps"] == pytest.approx(math.sqrt(2))

    def test_progress_fields(self, runner, replies):
        runner.handle(cluster_request("job-1", "kmeans", k=2, seed=0))

        progress = [r for r in replies if r["type"] == "progress"]
        assert [p["iteration"] for p in progress] == list(range(1, len(progress) + 1))
        assert all(p["algorithm"] == "kmeans" for p in progress)

    def test_algorithm_name_normalised(self, runner, replies):
        runner.handle(cluster_request("job-1", "KMeans", k=2, seed=0))
        assert replies[0]["algorithm"] == "kmeans"
        assert replies[-1]["type"] == "complete"

    def test_unknown_algorithm(self, runner, replies):
        runner.handle(cluster_request("job-1", "spectral"))

        assert types_of(replies) == ["error"]
        error = replies[0]["error"]
        assert error["kind"] == "input"
        assert error["error_code"] == "InvalidAlgorithmError"
        assert replies[0]["job_id"] == "job-1"

    def test_invalid_parameters(self, runner, replies):
        runner.handle(cluster_request("job-1", "dbscan", eps=-1))

        assert types_of(replies) == ["error"]
        assert replies[0]["error"]["kind"] == "input"
        assert replies[0]["algorithm"] == "dbscan"

    def test_empty_dataset(self, runner, replies):
        runner.handle(cluster_request("job-1", "kmeans", data=[]))

        assert replies[-1]["type"] == "error"
        assert replies[-1]["error"]["error_code"] == "InsufficientDataError"

    @pytest.mark.parametrize(
        "raw",
        [
            {"type": "cluster", "job_id": "job-1", "algorithm": "kmeans"},
            {"type": "reticulate", "job_id": "job-1"},
            ["not", "a", "dict"],
        ],
    )
    def test_malformed_request(self, runner, replies, raw):
        runner.handle(raw)

        assert types_of(replies) == ["error"]
        assert replies[0]["error"]["error_code"] == "ProtocolError"
        assert replies[0]["error"]["kind"] == "input"

    def test_unexpected_exception_becomes_execution_error(self, runner, replies, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(runner.engine, "create", explode)
        runner.handle(cluster_request("job-1"))

        assert types_of(replies) == ["error"]
        assert replies[0]["error"] == {"message": "boom", "kind": "execution", "error_code": "RuntimeError"}


@pytest.mark.unit
class TestJobRunnerCancellation:
    """Test suite for cooperative cancellation."""

    def test_cancel_active_job(self, runner, requests_queue, replies):
        """A cancel read at the first check point ends the job with `cancelled`."""
        requests_queue.put(cancel_request("job-1"))

        runner.handle(cluster_request("job-1", "hierarchical", numClusters=1))

        assert types_of(replies) == ["started", "cancelled"]

    def test_cancel_other_job_is_ignored(self, runner, requests_queue, replies):
        requests_queue.put(cancel_request("job-9"))

        runner.handle(cluster_request("job-1", k=2, seed=0))

        assert types_of(replies)[-1] == "complete"

    def test_cancel_buffered_job(self, runner, requests_queue, replies):
        """A job queued behind the active one is dropped with `cancelled`."""
        requests_queue.put(cluster_request("job-2", k=2))
        requests_queue.put(cancel_request("job-2"))

        runner.handle(cluster_request("job-1", k=2, seed=0))

        assert types_of(replies, "job-2") == ["cancelled"]
        assert types_of(replies, "job-1")[-1] == "complete"
        assert len(runner._pending) == 0

    def test_buffered_jobs_served_in_order(self, replies):
        requests = DrainingQueue()
        requests.put(cluster_request("job-1", k=2, seed=0))
        requests.put(cluster_request("job-2", k=2, seed=1))
        requests.put(cluster_request("job-3", k=2, seed=2))
        runner = JobRunner(requests, replies.append, cancel_poll_interval=0.0)

        runner.serve_forever()

        finished = [r["job_id"] for r in replies if r["type"] == "complete"]
        assert finished == ["job-1", "job-2", "job-3"]

    def test_shutdown_during_job(self, runner, requests_queue, replies):
        requests_queue.put(SHUTDOWN)

        runner.handle(cluster_request("job-1", k=2))

        assert types_of(replies) == ["started", "cancelled"]
        assert runner.stopping is True

    def test_cancel_without_active_job(self, runner, replies):
        runner.handle(cancel_request("job-1"))
        assert replies == []


@pytest.mark.unit
class TestWorkerMain:
    """Test suite for the worker entry point."""

    def test_shutdown_sentinel_echoed(self):
        requests, responses = queue.Queue(), queue.Queue()
        requests.put(SHUTDOWN)

        worker_main(requests, responses, cancel_poll_interval_ms=0)

        assert responses.get_nowait() is SHUTDOWN

    def test_shutdown_cancels_running_job(self):
        """The sentinel read at a check point cancels the job and stops the loop."""
        requests, responses = queue.Queue(), queue.Queue()
        requests.put(cluster_request("job-1", "hierarchical", numClusters=1))
        requests.put(SHUTDOWN)

        worker_main(requests, responses, cancel_poll_interval_ms=0)

        replies = []
        while not responses.empty():
            replies.append(responses.get_nowait())
        assert [r["type"] for r in replies[:-1]] == ["started", "cancelled"]
        assert replies[-1] is SHUTDOWN

    def test_resource_usage_logging(self, replies):
        runner = JobRunner(queue.Queue(), replies.append, log_resource_usage=True)

        runner.handle(cluster_request("job-1", "dbscan", eps=3, minPts=2))

        assert types_of(replies) == ["started", "progress", "complete"]
