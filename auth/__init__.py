"""auth/ -- Accounts, session tokens and access control for socialfeed.

Layer rule: auth/models.py, auth/tokens.py and auth/store.py import only
core/ plus third-party libraries. auth/dependencies.py composes them with
cache/ and social/ into the FastAPI access pipeline.
api/ imports from auth/, not the other way around.
"""
