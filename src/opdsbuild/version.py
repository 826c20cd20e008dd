# src/opdsbuild/version.py — v1
__version__ = "0.4.0"
