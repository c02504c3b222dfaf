"""Run the Tic-Tac-Toe room server: ``python -m tictactoe`` or ``tictactoe``.

Bind address and log level come from ``TICTACTOE_HOST``, ``TICTACTOE_PORT``
and ``TICTACTOE_LOG_LEVEL``; the room store is picked in ``tictactoe.api``.
"""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    """Serve the room, feed and single-device game routes with uvicorn."""

    host = os.environ.get("TICTACTOE_HOST", "0.0.0.0")
    port = int(os.environ.get("TICTACTOE_PORT", "8000"))
    log_level = os.environ.get("TICTACTOE_LOG_LEVEL", "info").lower()
    uvicorn.run("tictactoe.api:app", host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    main()
