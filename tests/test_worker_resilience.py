"""Tests for retry/circuit-breaker logic and the embedding worker."""
from __future__ import annotations

import threading
from typing import Sequence
from unittest.mock import Mock

import numpy as np
import pytest

from fileseek.embeddings.resilience import (
    CircuitBreaker,
    ErrorCategory,
    RetryPolicy,
    classify_error,
)
from fileseek.embeddings.worker import EmbeddingWorker
from fileseek.errors import EmbeddingError, EmbeddingTimeout

from conftest import FakeTextEmbedder


class TestErrorClassification:

    def test_timeout_is_permanent(self):
        assert classify_error(EmbeddingTimeout("slow")) == ErrorCategory.PERMANENT

    def test_bad_input_is_permanent(self):
        assert classify_error(ValueError("bad")) == ErrorCategory.PERMANENT
        assert classify_error(TypeError("bad")) == ErrorCategory.PERMANENT

    def test_runtime_error_is_transient(self):
        assert classify_error(RuntimeError("CUDA out of memory")) == ErrorCategory.TRANSIENT
        assert classify_error(ConnectionError("reset")) == ErrorCategory.TRANSIENT


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(threshold=2, reset_seconds=60)
        breaker.record_failure(ErrorCategory.TRANSIENT)
        assert not breaker.is_open()
        breaker.record_failure(ErrorCategory.TRANSIENT)
        assert breaker.is_open()
        assert breaker.state == "OPEN"

    def test_permanent_failures_do_not_trip(self):
        breaker = CircuitBreaker(threshold=1)
        breaker.record_failure(ErrorCategory.PERMANENT)
        assert not breaker.is_open()

    def test_success_resets_count(self):
        breaker = CircuitBreaker(threshold=2)
        breaker.record_failure(ErrorCategory.TRANSIENT)
        breaker.record_success()
        breaker.record_failure(ErrorCategory.TRANSIENT)
        assert not breaker.is_open()

    def test_auto_resets(self):
        breaker = CircuitBreaker(threshold=1, reset_seconds=0.0)
        breaker.record_failure(ErrorCategory.TRANSIENT)
        assert not breaker.is_open()
        assert breaker.state == "CLOSED"


class TestRetryPolicy:

    def test_transient_errors_are_retried(self):
        sleeps: list[float] = []
        policy = RetryPolicy(max_retries=2, backoff_base_ms=100, sleep=sleeps.append)
        fn = Mock(side_effect=[RuntimeError("flaky"), RuntimeError("flaky"), "ok"])
        assert policy.call(fn, source="doc") == "ok"
        assert fn.call_count == 3
        assert sleeps == pytest.approx([0.1, 0.2])

    def test_permanent_error_not_retried(self):
        policy = RetryPolicy(max_retries=3, sleep=lambda s: None)
        fn = Mock(side_effect=ValueError("bad input"))
        with pytest.raises(EmbeddingError, match="bad input"):
            policy.call(fn, source="doc")
        assert fn.call_count == 1

    def test_exhausted_retries_raise_and_count_towards_breaker(self):
        breaker = CircuitBreaker(threshold=1, reset_seconds=60)
        policy = RetryPolicy(max_retries=1, circuit_breaker=breaker, sleep=lambda s: None)
        fn = Mock(side_effect=RuntimeError("down"))
        with pytest.raises(EmbeddingError):
            policy.call(fn, source="doc")
        assert fn.call_count == 2
        assert breaker.is_open()

        # Open breaker fails fast without calling the model
        with pytest.raises(EmbeddingError, match="circuit breaker open"):
            policy.call(fn, source="doc")
        assert fn.call_count == 2

    def test_args_passed_through(self):
        policy = RetryPolicy()
        fn = Mock(return_value=42)
        assert policy.call(fn, 1, 2, source="s", label="x") == 42
        fn.assert_called_once_with(1, 2, label="x")


class _FlakyPerItem(FakeTextEmbedder):
    """Fails any batch containing 'bad', succeeds item by item otherwise."""

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        if any("bad" in t for t in texts):
            raise ValueError("bad item")
        return super().embed_texts(texts)


class _Slow(FakeTextEmbedder):
    def __init__(self, gate: threading.Event) -> None:
        super().__init__()
        self.gate = gate

    def embed_query(self, query: str) -> np.ndarray:
        self.gate.wait(5)
        return super().embed_query(query)


class TestEmbeddingWorker:

    def test_embeds_on_worker_thread(self):
        seen: list[str] = []

        class Recording(FakeTextEmbedder):
            def embed_texts(self, texts):
                seen.append(threading.current_thread().name)
                return super().embed_texts(texts)

        worker = EmbeddingWorker(Recording())
        worker.start()
        try:
            vecs = worker.embed_texts(["hello world", "goodbye"])
            assert vecs.shape == (2, worker.text_dims)
            assert seen == ["embedding-worker"]
        finally:
            worker.stop()
        assert not worker.running

    def test_batch_falls_back_to_per_item(self):
        worker = EmbeddingWorker(_FlakyPerItem(), retry=RetryPolicy(sleep=lambda s: None))
        try:
            result = worker.embed_text_batch(["good one", "bad one", "good two"], source="f")
            assert sorted(result.vectors) == [0, 2]
            assert list(result.failures) == [1]
            assert result.failure_ratio == pytest.approx(1 / 3)
        finally:
            worker.stop()

    def test_empty_batch(self):
        worker = EmbeddingWorker(FakeTextEmbedder())
        assert worker.embed_text_batch([]).failure_ratio == 0.0
        worker.stop()

    def test_timeout_raises(self):
        gate = threading.Event()
        worker = EmbeddingWorker(_Slow(gate), timeout_s=0.05)
        try:
            with pytest.raises(EmbeddingTimeout):
                worker.embed_text_query("hello")
        finally:
            gate.set()
            worker.stop()

    def test_images_unavailable_without_embedder(self):
        worker = EmbeddingWorker(FakeTextEmbedder())
        try:
            assert not worker.has_images
            assert worker.image_dims is None
            with pytest.raises(EmbeddingError):
                worker.embed_image_query("cat")
        finally:
            worker.stop()
