"""
Chat Module

Message models, stream demultiplexing, token estimation and logging helpers.
"""
