"""Test-prep practice sessions.

`testprep.practice` holds the client side: the session state machine, the
local storage slot and the background sync worker. The remaining modules
are the FastAPI session endpoints the client mirrors to, with their
models, repositories and services.
"""
