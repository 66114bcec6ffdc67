# run_match.py
"""
Interactive policy matcher.
Loads the policy folder, embeds every policy, then ranks policies for
free-text queries typed at the prompt.
"""

from config import configure_logging, load_settings
from policies import ServiceUnavailableError
from policies.exceptions import PCheckError, ValidationError
from policy_service import build_services


def print_startup_report(repository):
    """Show what was loaded and what was skipped."""
    policies = repository.all()
    print(f"Loaded {len(policies)} policies ({repository.embedded_count} embedded, "
          f"dimension={repository.dimension}).")

    for warning in repository.warnings:
        print(f"  skipped file: {warning.path} ({warning.reason})")
    for policy in repository.unembedded():
        print(f"  not searchable: {policy.id} ({policy.embedding_error})")


def read_int(prompt: str, default: int) -> int:
    raw = input(prompt).strip()
    return int(raw) if raw else default


def read_float(prompt: str, default: float) -> float:
    raw = input(prompt).strip()
    return float(raw) if raw else default


def main():
    settings = load_settings()
    configure_logging(settings.log_level)

    repository, matching_service = build_services(settings)
    print(f"Loading policies from {settings.data_folder} ...")
    repository.initialize()
    print_startup_report(repository)

    print("Policy Matcher")
    print("Type 'exit' to quit.\n")

    try:
        while True:
            query = input("Describe the case to match: ").strip()
            if not query:
                continue
            if query.lower() in ("exit", "quit", "q"):
                print("Goodbye!")
                break

            try:
                k = read_int("How many results? (default 5): ", 5)
                min_score = read_float("Minimum score? (default 0.0): ", 0.0)

                results = matching_service.match(query, k=k, min_score=min_score)
                if not results:
                    print("\nNo policies scored above the minimum.\n")
                    continue

                print("\n" + "-" * 80)
                for rank, result in enumerate(results, start=1):
                    print(f"{rank}. {result.policy.title} [{result.policy.id}] score={result.score:.4f}")
                print("-" * 80 + "\n")

            except ValueError as e:
                print(f"Invalid number: {e}\n")
            except ValidationError as e:
                print(f"Invalid query: {e}\n")
            except ServiceUnavailableError as e:
                print(f"Could not compute a match right now: {e}\n")
            except PCheckError as e:
                print(f"Error: {e}\n")
    finally:
        matching_service.close()
        repository.shutdown()


if __name__ == "__main__":
    main()
