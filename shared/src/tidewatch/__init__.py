"""Tidewatch shared package: configuration, models, schemas and services."""
