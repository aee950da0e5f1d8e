"""
Niri Transcribe Tests
=====================
"""
