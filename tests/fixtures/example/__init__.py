"""Instrumented example package exercising every handle access pattern."""
