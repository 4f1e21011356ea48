"""Document indexing entrypoint.

Indexes a single file or every supported file below a directory into the
configured knowledge-base store, then prints each document's outcome and the
store statistics.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from knowledge_rag.app.container import build_container
from knowledge_rag.common import IndexingStatus
from knowledge_rag.config import GlobalConfig, configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index documents into the knowledge base")

    parser.add_argument(
        "path",
        type=str,
        help="File or directory to index.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--workers",
        "-w",
        required=False,
        type=int,
        default=1,
        help="Documents indexed concurrently when indexing a directory (default: 1).",
    )

    parser.add_argument(
        "--log-level",
        required=False,
        type=str,
        default=None,
        help="Override the configured log level (optional).",
    )

    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if args.workers < 1:
        raise ValueError("--workers must be >= 1.")

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)
    if args.log_level:
        configure_logging(args.log_level, cfg.logging.get("format"))

    target = Path(args.path)
    if target.is_dir():
        results = container.indexer.index_directory(target, max_workers=args.workers)
    else:
        results = [container.indexer.index_document(target)]

    for result in results:
        line = f"[{result.status.value:>9}] {result.file_path}: {result.chunks_count} chunk(s)"
        if result.errors_count:
            line += f", {result.errors_count} failed"
        if result.error and result.status is IndexingStatus.FAILED:
            line += f" ({result.error})"
        print(line)

    stats = container.store.get_statistics()
    print(f"Knowledge base: {stats.documents_count} document(s), {stats.chunks_count} chunk(s)")

    failed = sum(1 for r in results if r.status is IndexingStatus.FAILED)
    return 1 if failed == len(results) and results else 0


if __name__ == "__main__":
    sys.exit(main())
