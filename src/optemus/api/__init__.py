"""Optemus FastAPI REST API layer.

This package contains the FastAPI application and the Pydantic request
models. All generation and storage logic lives in :mod:`optemus.core` and
:mod:`optemus.storage`; the handlers here only translate HTTP to calls on
those services and back.

Modules
-------
main
    FastAPI application factory, route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
"""
