"""
shipyard.serve - Unified-origin request routing.

Submodules: routes (classification), context (mode switch), proxy
(development forwarding), router (dispatch), server (HTTP binding).
Kept import-free: shipyard.build.config imports shipyard.serve.routes.
"""
