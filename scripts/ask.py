import argparse
import sys

from doc_qa.errors import DocQAError
from doc_qa.logging_setup import configure_logging
from doc_qa.pipeline import build_pipeline
from doc_qa.settings import load_settings, require_valid_settings


def main() -> int:
    """Stream an answer to stdout, followed by its numbered citations."""
    parser = argparse.ArgumentParser(description="Ask a question about the ingested document.")
    parser.add_argument("question")
    parser.add_argument("--top-k", type=int, default=None)
    parser.add_argument("--flexible", action="store_true", help="Allow answers beyond the document text.")
    parser.add_argument("--patient", action="store_true", help="Use patient-friendly wording.")
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    try:
        app = build_pipeline(require_valid_settings(settings))
        stream = app.ask_stream(
            args.question,
            top_k=args.top_k,
            strict=not args.flexible,
            patient_response=args.patient,
        )
    except DocQAError as exc:
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1

    with stream:
        for fragment in stream.fragments():
            sys.stdout.write(fragment)
            sys.stdout.flush()
    print("\n")
    for citation in stream.citations:
        print(f"[{citation.number}] {citation.heading} (score {citation.score:.3f})")
        print(f"    {citation.excerpt}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
