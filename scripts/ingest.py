import sys

from doc_qa.errors import ConfigurationInvalid
from doc_qa.logging_setup import configure_logging
from doc_qa.pipeline import build_pipeline
from doc_qa.settings import load_settings, require_valid_settings


def main() -> int:
    """Ingest the configured document (or the path given as the first argument)."""
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    try:
        require_valid_settings(settings)
    except ConfigurationInvalid as exc:
        print("Configuration errors:", file=sys.stderr)
        for number, problem in enumerate(exc.errors, start=1):
            print(f"  {number}. {problem}", file=sys.stderr)
        return 1

    document_path = sys.argv[1] if len(sys.argv) > 1 else None
    result = build_pipeline(settings).ingest(document_path)
    if not result.success:
        print(f"Ingestion failed: {'; '.join(result.errors)}", file=sys.stderr)
        return 1

    print(f"Ingested {result.document_path}")
    print(f"  Sections:     {result.section_count}")
    print(f"  Chunks:       {result.chunk_count}")
    print(f"  Total tokens: {result.total_tokens:,}")
    print(f"  Saved to:     {settings.paths.corpus_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
