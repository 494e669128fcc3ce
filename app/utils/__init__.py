"""Utility functions for the backend."""

from app.utils.json_extraction import extract_json, recover_first_array, strip_code_fences, trim_to_json

__all__ = ["extract_json", "recover_first_array", "strip_code_fences", "trim_to_json"]
