"""
IP-level rate limiting using slowapi.

This is the coarse outer tier; the per-phone OTP throttle lives in
app.services.phone_rate_limiter. Tiers:
  • otp    – 20/min (OTP send/resend – SMS cost)
  • verify – 30/min (OTP verify)
  • login  – 10/min (password login – brute-force)
  • default – 60/min (everything else)

The limiter keys on client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])

# Named rate strings for use in @limiter.limit() decorators
OTP = "20/minute"
VERIFY = "30/minute"
LOGIN = "10/minute"
