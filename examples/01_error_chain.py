#!/usr/bin/env python3
"""Structured errors - one type, many kinds, full cause chains.

WHY ONE ERROR TYPE
──────────────────
Every failure carries a ``kind`` tag, kind-specific attributes and an
explicit ``retryable`` flag. Wrapping lower-level errors as ``cause``
keeps the whole story (API → service → database) for logs and for
whoever decides whether to retry.

Run: python examples/01_error_chain.py
"""
import json

from resilient import (
    ErrorBoundary,
    MemorySink,
    api_error,
    database_error,
    error_response,
    format_chain,
    render_chain,
    service_error,
)


def fetch_user(user_id: int):
    try:
        raise TimeoutError("socket read timed out")
    except TimeoutError as exc:
        db = database_error(
            "Connection timeout",
            query=f"SELECT * FROM users WHERE id = {user_id}",
            error_code="CONN_TIMEOUT",
            cause=exc,
        )
    svc = service_error("Failed to fetch user data", operation="getUserById", cause=db)
    raise api_error(
        "Internal server error while processing request",
        endpoint=f"/api/users/{user_id}",
        status_code=500,
        cause=svc,
    )


def main():
    print("=" * 60)
    print("Structured Error Chains")
    print("=" * 60)

    sink = MemorySink()
    with ErrorBoundary(name="request", sink=sink) as boundary:
        fetch_user(123)

    error = boundary.error
    print("\n[1] Chain (outermost first)")
    for kind, message in format_chain(error):
        print(f"  {kind:<10} {message}")

    print("\n[2] Rendered")
    print(render_chain(error))

    print("\n[3] Serialized")
    print(json.dumps(error.to_dict(), indent=2))

    print("\n[4] Response")
    print(f"  {error_response(error).to_dict()}")
    print(f"  Events recorded: {sink.kinds()}")


if __name__ == "__main__":
    main()
