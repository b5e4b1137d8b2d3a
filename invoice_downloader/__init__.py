"""Download amazon.com order invoices and build a yearly card transaction report."""

from typing import Any

__all__ = ["run_pipeline"]


def __getattr__(name: str) -> Any:
    if name == "run_pipeline":
        from invoice_downloader.pipeline import run_pipeline as _run_pipeline

        return _run_pipeline
    raise AttributeError(name)
