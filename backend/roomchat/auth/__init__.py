"""Authentication module (JWT + session id).

Services:
    - AuthService: validates the token and session a chat socket connects with.
"""
