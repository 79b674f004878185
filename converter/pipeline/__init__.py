# FILE: converter/pipeline/__init__.py
"""Conversion pipeline: phase orchestration, repair loop, merge and event framing."""
