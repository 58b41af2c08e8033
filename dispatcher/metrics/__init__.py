from dispatcher.metrics.aggregator import FailureRecord, Summary, WorkerStats, summarize

__all__ = ["FailureRecord", "Summary", "WorkerStats", "summarize"]
