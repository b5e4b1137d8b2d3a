from __future__ import annotations

from invoice_downloader.cli import run

if __name__ == "__main__":  # pragma: no cover
    run()
