"""Authentication module (password login + JWT bearer tokens).

Services:
    - AuthService: password hashing, token issue/validation, staff and
      guest accounts.

Dependencies:
    - get_current_user / require_roles: bearer-token guards for routers.
"""
