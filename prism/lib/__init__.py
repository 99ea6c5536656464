"""Shared library for the prism pipeline: paths, text helpers, Markdown editing, model calls."""
