# FILE: converter/api/__init__.py
