"""Question answering entrypoint.

Runs the RAG pipeline for one question and prints the answer, the sources
used, the relevance filter statistics and the citation check.
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
from knowledge_rag.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask a question against the knowledge base")

    parser.add_argument(
        "question",
        type=str,
        help="Question to answer.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--top-k",
        "-k",
        required=False,
        type=int,
        default=None,
        help="Override search.top_k (optional).",
    )

    parser.add_argument(
        "--min-similarity",
        "-m",
        required=False,
        type=float,
        default=None,
        help="Override search.min_similarity (optional).",
    )

    parser.add_argument(
        "--no-filter",
        action="store_true",
        help="Skip the relevance filter.",
    )

    return parser.parse_args()


def main() -> int:
    args = parse_args()

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)

    response = container.rag_pipeline.run(
        args.question,
        top_k=args.top_k,
        min_similarity=args.min_similarity,
        apply_filter=not args.no_filter,
    )

    print(response.answer)
    print()

    if response.context_chunks:
        print("Sources:")
        for i, chunk in enumerate(response.context_chunks, start=1):
            label = chunk.document_file_path or chunk.document_title or chunk.document_id
            score = f"similarity {chunk.similarity:.2f}"
            if chunk.rerank_score is not None:
                score += f", rerank {chunk.rerank_score:.2f}"
            print(f"  {i}. {label} ({score})")
    else:
        print("Sources: none (answered without knowledge-base context)")

    stats = response.filter_stats
    if stats is not None:
        print(
            f"Filter: {stats.filter_type.value}, kept {stats.kept}/{stats.retrieved}"
            + (" (reranker fallback)" if stats.reranker_fallback else "")
        )
        for dropped in stats.dropped:
            print(f"  dropped {dropped.chunk_id}: {dropped.reason}")

    if response.citations is not None:
        c = response.citations
        print(f"Citations: {len(c.citations)} found, {len(c.valid_citations)} valid")

    print(f"Tokens used: {response.tokens_used}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
