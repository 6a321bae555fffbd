"""Account registration, email verification by OTP, API login and password management."""
