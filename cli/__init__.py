"""
BlobDB Command-Line Interface
=============================
Output rendering for main.py.
"""
