from __future__ import annotations

from fastapi import Request

from billbus.services.runtime import Runtime, build_runtime


def get_runtime(request: Request) -> Runtime:
    # Built on first use so importing the app never touches config or databases.
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime(validate=True)
        request.app.state.runtime = runtime
    return runtime
