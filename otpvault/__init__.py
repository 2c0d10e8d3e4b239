"""
OTP Vault
Copyright (c) 2025

HOTP/TOTP authenticator with encrypted backups and WebDAV synchronization.
Secrets never leave the device except inside backups the user exports or
uploads to a server they configured.
"""
