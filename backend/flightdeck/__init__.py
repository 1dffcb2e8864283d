"""FlightDeck airport quiz backend.

This package exposes the quiz engine, service, repository and model
modules used by the FastAPI application. Individual modules contain
the concrete implementations and documentation.
"""
