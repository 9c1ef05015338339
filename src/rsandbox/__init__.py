"""
rsandbox - Sandboxed execution of statistical analysis code
===========================================================

FastAPI service that runs submitted R snippets (or prompts expanded into R)
against uploaded tabular data inside long-lived interpreter subprocesses.

Key Features:
    - **Code Validation**: Declarative deny/allow rule table screening submitted code
    - **Session Pool**: Bounded, LRU-evicted pool of interpreter subprocesses keyed by session id
    - **Deterministic Framing**: Per-call random tokens delimit each execution's output
    - **Idle Reaper**: Background sweep reclaiming idle and crashed sessions
    - **Gateway**: REST and WebSocket adapters with consistent error responses
    - **Observability**: Structured JSON logs and Prometheus metrics

Modules:
    api: FastAPI routes, middleware, and WebSocket handling
    core: Validator, sessions, pool, dialects, settings, and typed errors
    models: Pydantic request/response and error models
    utils: Logging and metrics
"""

__version__ = "1.0.0"
