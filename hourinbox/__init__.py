"""HourInbox - Webmail-Server mit IMAP/SMTP-Proxy und Redis-Cache."""

__version__ = "1.0.0"
