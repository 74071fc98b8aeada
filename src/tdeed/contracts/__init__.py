"""Bundled contract interface definitions, one directory per network."""
