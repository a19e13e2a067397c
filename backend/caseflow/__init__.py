"""Fraud case lifecycle orchestration service."""
