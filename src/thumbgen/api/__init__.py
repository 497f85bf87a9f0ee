"""Thumbgen — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request models,
the generation history store and the current-view state.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
history_store
    Capped, newest-first generation history persisted as one JSON file.
state
    The current generation view and history restore.
"""
