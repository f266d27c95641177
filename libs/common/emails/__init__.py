"""
Paylive Email Package.

Modules:
- core: Base send_email function (SMTP)
- prospect: Prospecting email sent from the admin page
"""
