# Default host application (session cookie, login, home page).
# Created: 2026-10-19
