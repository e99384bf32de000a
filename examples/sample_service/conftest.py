"""Puts the service root on sys.path so ``pytest`` can import ``app``."""
