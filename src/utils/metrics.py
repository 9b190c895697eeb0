"""
Per-turn performance metrics.
Tracks graph node latency and LLM usage for a single chat turn.
"""

import time
from typing import Any
from contextvars import ContextVar

from src.utils.logger import get_logger

logger = get_logger(__name__)

# Metrics of the turn currently being processed
metrics_ctx: ContextVar[dict[str, Any] | None] = ContextVar("metrics", default=None)


class TurnMetrics:
    """
    Collects metrics for one chat turn.
    Registers itself in the context so nodes and services can record into it.
    """

    def __init__(self):
        self.metrics = {
            "node_timings": {},
            "llm": {"calls": 0, "failures": 0, "rejected": 0},
            "tokens": {"input": 0, "output": 0, "total": 0},
            "total_time": 0.0,
            "start_time": time.time(),
        }
        self._token = metrics_ctx.set(self.metrics)

    def finalize(self, **fields: Any) -> dict[str, Any]:
        """
        Computes totals, logs a summary line and detaches from the context.

        Args:
            **fields: Extra fields to include in the summary log

        Returns:
            Dictionary with all collected metrics
        """
        self.metrics["total_time"] = time.time() - self.metrics["start_time"]

        node_summary = {}
        for node_name, timings in self.metrics["node_timings"].items():
            node_summary[node_name] = {
                "total_time": sum(
                    t["end"] - t["start"] for t in timings if t["end"] is not None
                ),
                "call_count": len(timings),
            }
        self.metrics["node_summary"] = node_summary

        logger.info(
            "turn_metrics",
            total_time=self.metrics["total_time"],
            llm_calls=self.metrics["llm"]["calls"],
            total_tokens=self.metrics["tokens"]["total"],
            node_summary=node_summary,
            **fields,
        )
        metrics_ctx.reset(self._token)
        return self.metrics


def get_metrics() -> dict[str, Any] | None:
    """Get metrics of the current turn, or None outside a turn."""
    return metrics_ctx.get()


def start_node_timing(node_name: str) -> None:
    """
    Start timing a graph node.

    Args:
        node_name: Name of the node
    """
    metrics = metrics_ctx.get()
    if metrics is None:
        return
    metrics["node_timings"].setdefault(node_name, []).append(
        {"start": time.time(), "end": None}
    )


def end_node_timing(node_name: str) -> float | None:
    """
    End timing a graph node.

    Args:
        node_name: Name of the node

    Returns:
        Elapsed time or None if no timing was started
    """
    metrics = metrics_ctx.get()
    if not metrics or node_name not in metrics["node_timings"]:
        return None

    timings = metrics["node_timings"][node_name]
    if not timings or timings[-1]["end"] is not None:
        return None

    timings[-1]["end"] = time.time()
    elapsed = timings[-1]["end"] - timings[-1]["start"]
    logger.debug("node_completed", node=node_name, elapsed=elapsed)
    return elapsed


def record_llm_call(
    succeeded: bool, input_tokens: int = 0, output_tokens: int = 0
) -> None:
    """Records one LLM round trip in the current turn's metrics."""
    metrics = metrics_ctx.get()
    if metrics is None:
        return
    metrics["llm"]["calls"] += 1
    if not succeeded:
        metrics["llm"]["failures"] += 1
    metrics["tokens"]["input"] += input_tokens
    metrics["tokens"]["output"] += output_tokens
    metrics["tokens"]["total"] += input_tokens + output_tokens


def record_rate_limited() -> None:
    """Records a request rejected by the local rate limiter."""
    metrics = metrics_ctx.get()
    if metrics is not None:
        metrics["llm"]["rejected"] += 1
