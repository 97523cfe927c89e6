"""auth/ -- Accounts, credentials, verification tokens, and the auth workflow.

Layer rule: auth/ imports from core/, query/, sessions/, and mail/ (the
workflow's collaborators) plus stdlib and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
