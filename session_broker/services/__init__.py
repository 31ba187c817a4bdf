"""Services: OTP correlation, mailbox access, sessions and browser login."""
