"""Student profile engine.

Layers: ``domain`` (profile models and payload shapes), ``services``
(extraction, matching, merging, history), ``infrastructure`` (profile
repositories) and ``api`` (HTTP routes).
"""
