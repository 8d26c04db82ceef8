"""ShiftCheck kiosk: shared-device client for completing and signing off tasklists."""

__version__ = "0.1.0"
