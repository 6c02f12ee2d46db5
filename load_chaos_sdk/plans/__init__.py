"""Bundled run profiles (YAML), loaded with ``load_builtin_plan``."""
